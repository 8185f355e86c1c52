"""HTTP 客户端封装。

对 httpx.AsyncClient 做一层薄封装，提供统一的异常语义：
- 网络层错误（超时、DNS、连接失败）映射为 LlmError 的网络类错误；
- 非 2xx 响应映射为带状态码与响应体的 LlmError。
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import LlmError


@dataclass
class HttpResponse:
    """统一的 HTTP 响应包装。"""

    status_code: int
    headers: Mapping[str, str]
    body: str


def build_timeout(connect_timeout: float, read_timeout: Optional[float]) -> httpx.Timeout:
    return httpx.Timeout(connect_timeout, read=read_timeout)


def client_kwargs(
    timeout: httpx.Timeout,
    proxy: Optional[str],
    transport: Optional[httpx.AsyncBaseTransport],
) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"timeout": timeout, "trust_env": False}
    if transport is not None:
        kwargs["transport"] = transport
    elif proxy:
        kwargs["proxy"] = proxy
    return kwargs


class HttpClient:
    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout or settings.http_timeout
        self._transport = transport

    async def execute(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        proxy: Optional[str] = None,
    ) -> HttpResponse:
        """执行 HTTP 请求并返回包装后的响应。

        Raises:
            LlmError: 出现网络层错误或非 2xx 状态码时抛出。
        """

        kwargs = client_kwargs(build_timeout(self._timeout, self._timeout), proxy, self._transport)
        try:
            async with httpx.AsyncClient(**kwargs) as client:
                resp = await client.request(method, url, headers=headers, json=json_body, params=params)
        except httpx.HTTPError as e:
            raise LlmError.from_transport(e)
        body = resp.text
        if not resp.is_success:
            raise LlmError.from_status(resp.status_code, body)
        return HttpResponse(status_code=resp.status_code, headers=resp.headers, body=body)
