"""会话级流式任务注册表。

保存每个会话正在运行的流式任务与提示打字任务，保证同一会话任意时刻
最多只有一组存活任务：注册新任务前先取消并移除旧任务。
即使上层的 ConversationLogic 被重新创建，也能通过 session_id 找到并取消任务。
"""

import logging
import threading
from typing import Dict, Optional, Protocol

from chat_core.infrastructure.logging.logger import log_event


class Cancellable(Protocol):
    def cancel(self, msg=None) -> bool:
        ...


class StreamingTaskRegistry:
    def __init__(self):
        self._streaming_jobs: Dict[str, Cancellable] = {}
        self._hint_jobs: Dict[str, Cancellable] = {}
        self._lock = threading.Lock()

    def register(
        self,
        session_id: str,
        streaming_job: Optional[Cancellable],
        hint_job: Optional[Cancellable] = None,
    ) -> None:
        """注册会话任务；已有任务会先被取消并移除。"""

        with self._lock:
            self._pop_and_cancel(session_id)
            if streaming_job is not None:
                self._streaming_jobs[session_id] = streaming_job
            if hint_job is not None:
                self._hint_jobs[session_id] = hint_job

    def cancel(self, session_id: str) -> None:
        """取消并移除会话任务；会话没有任务时什么都不做。"""

        with self._lock:
            cancelled = self._pop_and_cancel(session_id)
        if cancelled:
            log_event(logging.DEBUG, "Cancelled session tasks", session_id=session_id)

    def remove(self, session_id: str, streaming_job: Optional[Cancellable] = None) -> None:
        """任务完成后移除引用，不取消任务。

        传入 streaming_job 时，只有它仍是当前登记的任务才会移除，
        避免误删同一会话随后注册的新任务。
        """

        with self._lock:
            current = self._streaming_jobs.get(session_id)
            if streaming_job is not None and current is not None and current is not streaming_job:
                return
            self._streaming_jobs.pop(session_id, None)
            self._hint_jobs.pop(session_id, None)

    def clear(self) -> None:
        """取消并移除所有会话的任务。"""

        with self._lock:
            jobs = list(self._streaming_jobs.values()) + list(self._hint_jobs.values())
            self._streaming_jobs.clear()
            self._hint_jobs.clear()
        for job in jobs:
            job.cancel()

    def has_tasks(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._streaming_jobs or session_id in self._hint_jobs

    def _pop_and_cancel(self, session_id: str) -> bool:
        streaming = self._streaming_jobs.pop(session_id, None)
        hint = self._hint_jobs.pop(session_id, None)
        for job in (streaming, hint):
            if job is not None:
                job.cancel()
        return streaming is not None or hint is not None
