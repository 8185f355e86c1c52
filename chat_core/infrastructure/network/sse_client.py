"""SSE 客户端，负责长连接读取与统一异常处理。

- 每个 task_id 同一时间只持有一个活动连接，同一 task_id 再次发起会先取消旧连接。
- 逐行读取响应，去掉 `data:` 前缀，跳过空行、注释（心跳）与其他 SSE 字段。
- 取消是协作式的：cancel(task_id) 会取消正在读取该连接的 asyncio 任务，
  读取循环在下一次 await 处收到 CancelledError 并关闭连接。
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import LlmError
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.network.http_client import build_timeout, client_kwargs

_SSE_FIELDS = ("event:", "id:", "retry:")


@dataclass
class SseRequest:
    url: str
    json_body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, str] = field(default_factory=dict)
    method: str = "POST"
    proxy: Optional[str] = None


def parse_sse_data(line: str) -> Optional[str]:
    """提取一行 SSE 的数据部分；心跳、注释或非 data 字段返回 None。"""

    if not line or not line.strip() or line.startswith(":"):
        return None
    if line.startswith("data:"):
        return line[5:].strip()
    if line.startswith(_SSE_FIELDS):
        return None
    return line.strip()


class SseClient:
    def __init__(
        self,
        timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout or settings.http_timeout
        self._read_timeout = read_timeout if read_timeout is not None else settings.stream_read_timeout
        self._transport = transport
        self._active: Dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()

    async def stream(self, request: SseRequest, task_id: str) -> AsyncIterator[str]:
        """打开流式请求并逐条产出 data 负载（不含 `data:` 前缀）。

        Raises:
            LlmError: 网络错误或非 2xx 响应。
        """

        current = asyncio.current_task()
        with self._lock:
            previous = self._active.get(task_id)
            if current is not None:
                self._active[task_id] = current
        if previous is not None and previous is not current and not previous.done():
            log_event(logging.INFO, "Cancelling previous call with same task id", task_id=task_id)
            previous.cancel()

        kwargs = client_kwargs(
            build_timeout(self._timeout, self._read_timeout),
            request.proxy,
            self._transport,
        )
        try:
            async with httpx.AsyncClient(**kwargs) as client:
                async with client.stream(
                    request.method,
                    request.url,
                    json=request.json_body,
                    headers=request.headers,
                    params=request.params or None,
                ) as resp:
                    if not resp.is_success:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        raise LlmError.from_status(resp.status_code, body, task_id=task_id)
                    async for line in resp.aiter_lines():
                        payload = parse_sse_data(line)
                        if payload is None:
                            continue
                        yield payload
        except httpx.HTTPError as e:
            raise LlmError.from_transport(e, task_id=task_id)
        finally:
            with self._lock:
                if self._active.get(task_id) is current:
                    del self._active[task_id]

    def cancel(self, task_id: str) -> bool:
        """取消指定任务；任务不存在时返回 False。"""

        with self._lock:
            task = self._active.pop(task_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            tasks = list(self._active.values())
            self._active.clear()
        for task in tasks:
            if not task.done():
                task.cancel()

    def is_active(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._active
