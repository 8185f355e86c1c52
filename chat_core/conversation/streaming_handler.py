"""流式响应消费。

StreamingResponseHandler 把文本增量流驱动到结束：

- 累积完整回答，并按固定的墙钟间隔把部分回答写入持久化层；
- 打字模式（ui_state.stream_response 为 True）下逐字显示增量；
- 非打字模式下，首个非空增量到达时逐字显示一次“加载较慢”的提示；
- 正常结束时做一次最终写入并通知会话已更新；
- 被取消时不做最终写入并返回空串，取消不算失败；
- 中途出错时把异常抛给调用方，不把部分回答当作成功结果。

流式消费任务与提示打字任务是两个兄弟任务，start() 立即返回二者，
join() 在返回前保证两个任务都已结束。
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional

from chat_core.config.settings import settings
from chat_core.conversation.errors import is_cancellation_related
from chat_core.conversation.ui_state import ConversationUiState
from chat_core.domain.conversation import MessagePersistenceGateway, NoOpMessagePersistenceGateway
from chat_core.domain.models import ChatHistoryItem
from chat_core.infrastructure.logging.logger import log_event, log_throwable_chain

CancelledCheck = Callable[[], bool]
SessionUpdatedCallback = Callable[[str], Awaitable[None]]


@dataclass
class _StreamState:
    full_response: str = ""
    last_persist_at: Optional[float] = None
    hint_requested: asyncio.Event = field(default_factory=asyncio.Event)


@dataclass
class StreamingJobs:
    """一次流式调用的两个可取消任务。"""

    streaming_job: asyncio.Task
    hint_job: asyncio.Task
    state: _StreamState


class StreamingResponseHandler:
    def __init__(
        self,
        ui_state: ConversationUiState,
        persistence_gateway: Optional[MessagePersistenceGateway],
        session_id: str,
        on_session_updated: Optional[SessionUpdatedCallback] = None,
        *,
        persist_interval: Optional[float] = None,
        char_delay: Optional[float] = None,
        hint_text: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ui = ui_state
        self._gateway = persistence_gateway or NoOpMessagePersistenceGateway()
        self._session_id = session_id
        self._on_session_updated = on_session_updated
        self._persist_interval = settings.persist_interval if persist_interval is None else persist_interval
        self._char_delay = settings.typing_char_delay if char_delay is None else char_delay
        self._hint_text = settings.slow_loading_hint if hint_text is None else hint_text
        self._clock = clock

    def start(self, stream: AsyncIterator[str], is_cancelled: CancelledCheck) -> StreamingJobs:
        """启动消费任务与提示任务并立即返回，供调用方登记到任务注册表。"""

        state = _StreamState()
        hint_job = asyncio.create_task(self._type_hint(state, is_cancelled))
        streaming_job = asyncio.create_task(self._consume(stream, state, is_cancelled))
        return StreamingJobs(streaming_job=streaming_job, hint_job=hint_job, state=state)

    async def join(
        self,
        jobs: StreamingJobs,
        is_cancelled: CancelledCheck,
        is_superseded: Optional[CancelledCheck] = None,
    ) -> str:
        """等待两个任务结束并完成收尾。

        is_superseded 返回 True 表示同一会话已开始新的生成，此时界面与持久化
        都属于新的生成，本次调用不再做任何收尾。

        Returns:
            完整回答；被取消时为空串。

        Raises:
            Exception: 流式过程中出现的非取消类异常。
        """

        try:
            await asyncio.wait({jobs.streaming_job})
            if not jobs.state.hint_requested.is_set():
                jobs.hint_job.cancel()
            await asyncio.wait({jobs.hint_job})
        except asyncio.CancelledError:
            # 调用方自身被取消：两个子任务都结束后再向上传递
            jobs.streaming_job.cancel()
            jobs.hint_job.cancel()
            await asyncio.gather(jobs.streaming_job, jobs.hint_job, return_exceptions=True)
            raise

        self._check_hint_result(jobs.hint_job)

        cancelled = jobs.streaming_job.cancelled()
        error: Optional[BaseException] = None if cancelled else jobs.streaming_job.exception()
        if is_superseded is not None and is_superseded():
            log_event(logging.DEBUG, "Stream superseded by a newer generation", session_id=self._session_id)
            return ""
        if error is not None and is_cancellation_related(error):
            cancelled, error = True, None
        if error is not None:
            log_throwable_chain("StreamingHandler", "Stream error during collect", error)
            raise error
        cancelled = cancelled or is_cancelled()

        full_response = jobs.state.full_response
        if not self._ui.stream_response and full_response and not cancelled:
            self._ui.update_last_message_loading_state(False)
            self._ui.replace_last_message_content(full_response)
        if cancelled:
            self._ui.update_last_message_loading_state(False)
        self._ui.is_generating = False

        if cancelled:
            log_event(logging.DEBUG, "Stream cancelled", session_id=self._session_id)
            return ""

        if full_response:
            await self._persist(full_response)
            if self._on_session_updated is not None:
                await self._on_session_updated(self._session_id)
        return full_response

    async def handle_streaming(
        self,
        stream: AsyncIterator[str],
        is_cancelled: CancelledCheck,
        on_jobs_created: Optional[Callable[[StreamingJobs], None]] = None,
        is_superseded: Optional[CancelledCheck] = None,
    ) -> str:
        """start + join 的便捷组合。"""

        jobs = self.start(stream, is_cancelled)
        if on_jobs_created is not None:
            on_jobs_created(jobs)
        return await self.join(jobs, is_cancelled, is_superseded)

    # ---- 子任务 ----

    async def _consume(self, stream: AsyncIterator[str], state: _StreamState, is_cancelled: CancelledCheck) -> None:
        async for delta in stream:
            if is_cancelled():
                return
            if not delta:
                continue
            if self._ui.stream_response:
                pieces = list(delta) if self._char_delay > 0 else [delta]
                for piece in pieces:
                    state.full_response += piece
                    self._ui.append_to_last_message(piece)
                    await self._maybe_persist(state)
                    if self._char_delay > 0:
                        await asyncio.sleep(self._char_delay)
                    if is_cancelled():
                        return
            else:
                state.full_response += delta
                state.hint_requested.set()
                await self._maybe_persist(state)
                if is_cancelled():
                    return

    async def _type_hint(self, state: _StreamState, is_cancelled: CancelledCheck) -> None:
        await state.hint_requested.wait()
        for ch in self._hint_text:
            if is_cancelled():
                break
            self._ui.append_to_last_message(ch)
            self._ui.update_last_message_loading_state(True)
            if self._char_delay > 0:
                await asyncio.sleep(self._char_delay)

    # ---- 辅助方法 ----

    async def _maybe_persist(self, state: _StreamState) -> None:
        now = self._clock()
        if state.last_persist_at is not None and now - state.last_persist_at < self._persist_interval:
            return
        state.last_persist_at = now
        await self._persist(state.full_response)

    async def _persist(self, content: str) -> None:
        await self._gateway.replace_last_assistant_message(
            self._session_id,
            ChatHistoryItem(role="assistant", content=content),
        )

    @staticmethod
    def _check_hint_result(hint_job: asyncio.Task) -> None:
        if hint_job.cancelled():
            return
        error = hint_job.exception()
        if error is not None:
            log_throwable_chain("StreamingHandler", "Hint typing failed", error)
