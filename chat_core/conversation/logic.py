"""会话业务逻辑：发送、取消与重新生成。"""

import asyncio
import logging
from typing import Callable, List, Optional

from chat_core.api.service import ChatService
from chat_core.config.settings import settings
from chat_core.conversation.errors import report_generation_failure, reset_generating
from chat_core.conversation.rollback_handler import NO_PROVIDER_MESSAGE, RollbackHandler
from chat_core.conversation.send_message import RollbackMessageUseCase, SendMessageUseCase
from chat_core.conversation.streaming_handler import SessionUpdatedCallback, StreamingResponseHandler
from chat_core.conversation.task_registry import StreamingTaskRegistry
from chat_core.conversation.ui_state import AUTHOR_AI, AUTHOR_ME, AUTHOR_SYSTEM, ConversationUiState, Message
from chat_core.domain.conversation import MessagePersistenceGateway, NoOpMessagePersistenceGateway
from chat_core.domain.models import ChatHistoryItem, Model, TextGenerationParams
from chat_core.domain.provider_setting import ProviderSetting
from chat_core.infrastructure.logging.logger import log_event


class ConversationLogic:
    """单个会话的业务逻辑。

    任务通过共享的 StreamingTaskRegistry 登记，因此即使本对象在切换会话后被重新创建，
    旧会话的任务也能按 session_id 被取消。
    """

    def __init__(
        self,
        ui_state: ConversationUiState,
        session_id: str,
        chat_service: ChatService,
        task_registry: StreamingTaskRegistry,
        persistence_gateway: Optional[MessagePersistenceGateway] = None,
        on_session_updated: Optional[SessionUpdatedCallback] = None,
        author_me: str = AUTHOR_ME,
        max_context_messages: Optional[int] = None,
        **streaming_options,
    ):
        self._ui = ui_state
        self._session_id = session_id
        self._chat = chat_service
        self._registry = task_registry
        self._author_me = author_me
        self._max_context = max_context_messages or settings.max_context_messages
        self._active_task_id: Optional[str] = None
        self._cancelled = False
        self._generation = 0

        gateway = persistence_gateway or NoOpMessagePersistenceGateway()
        self._send = SendMessageUseCase(chat_service, gateway)
        self._streaming = StreamingResponseHandler(
            ui_state,
            gateway,
            session_id,
            on_session_updated,
            **streaming_options,
        )
        self._rollback = RollbackHandler(
            ui_state,
            RollbackMessageUseCase(chat_service, gateway),
            self._streaming,
            session_id,
            author_me,
        )

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def ui_state(self) -> ConversationUiState:
        return self._ui

    @property
    def active_task_id(self) -> Optional[str]:
        return self._active_task_id

    def is_cancelled(self) -> bool:
        return self._cancelled

    async def cancel_streaming(self) -> None:
        """取消当前生成；取消本身失败也不向用户报错。"""

        self._cancelled = True
        task_id = self._active_task_id
        if task_id is not None:
            self._chat.cancel_streaming(task_id)
        self._registry.cancel(self._session_id)
        self._active_task_id = None
        self._ui.active_task_id = None
        self._ui.is_generating = False
        log_event(logging.INFO, "Streaming cancelled by user", session_id=self._session_id, task_id=task_id)

    async def process_message(
        self,
        input_content: str,
        provider_setting: Optional[ProviderSetting],
        model: Optional[Model],
    ) -> str:
        """发送一条用户消息并驱动回答流到结束。

        Returns:
            完整回答；被取消、失败或未配置 Provider 时为空串。
        """

        is_superseded = self._begin_generation()
        self._ui.add_message(Message(self._author_me, input_content))
        if provider_setting is None or model is None:
            self._ui.is_generating = False
            self._ui.add_message(Message(AUTHOR_SYSTEM, NO_PROVIDER_MESSAGE))
            return ""

        self._ui.is_generating = True
        history = self._context_history()
        user_message = ChatHistoryItem(role="user", content=input_content)
        params = TextGenerationParams(
            model=model,
            temperature=self._ui.temperature,
            max_tokens=self._ui.max_tokens,
        )
        self._ui.add_message(Message(AUTHOR_AI, "", is_loading=True))

        try:
            output = await self._send(self._session_id, user_message, history, provider_setting, params)
            if is_superseded():
                self._chat.cancel_streaming(output.task_id)
                return ""
            self._set_active_task(output.task_id)
            jobs = self._streaming.start(output.stream, self.is_cancelled)
            self._registry.register(self._session_id, jobs.streaming_job, jobs.hint_job)
            try:
                return await self._streaming.join(jobs, self.is_cancelled, is_superseded)
            finally:
                self._registry.remove(self._session_id, jobs.streaming_job)
                self._clear_active_task(output.task_id)
        except asyncio.CancelledError:
            reset_generating(self._ui)
            raise
        except Exception as e:
            report_generation_failure(self._ui, e, "ConversationLogic")
            return ""

    async def regenerate(self, provider_setting: Optional[ProviderSetting], model: Optional[Model]) -> str:
        """回滚最后一条回答并重新生成；没有可重新生成的内容时什么都不做。"""

        generation = self._generation + 1
        run = await self._rollback.rollback_and_regenerate(
            provider_setting,
            model,
            self.is_cancelled,
            on_prepared=self._begin_generation,
            is_superseded=lambda: self._generation != generation,
        )
        if run is None:
            return ""
        self._set_active_task(run.task_id)
        self._registry.register(self._session_id, run.jobs.streaming_job, run.jobs.hint_job)
        try:
            return await run.wait()
        finally:
            self._registry.remove(self._session_id, run.jobs.streaming_job)
            self._clear_active_task(run.task_id)

    def _begin_generation(self) -> Callable[[], bool]:
        """开始新一轮生成：停掉本会话仍在运行的任务，返回判断本轮是否已被取代的函数。"""

        if self._registry.has_tasks(self._session_id):
            # 被取代的任务不再收尾，由这里结束它占位消息的加载状态
            self._ui.update_last_message_loading_state(False)
            self._registry.cancel(self._session_id)
        self._cancelled = False
        self._generation += 1
        generation = self._generation
        return lambda: self._generation != generation

    def _context_history(self) -> List[ChatHistoryItem]:
        """最近的上下文（不含刚添加的用户消息），过滤系统提示。"""

        visible = [m for m in self._ui.messages if m.author != AUTHOR_SYSTEM]
        recent = visible[-self._max_context:]
        if recent and recent[-1].author == self._author_me:
            recent = recent[:-1]
        return [
            ChatHistoryItem(role="user" if m.author == self._author_me else "assistant", content=m.content)
            for m in recent
        ]

    def _set_active_task(self, task_id: str) -> None:
        self._active_task_id = task_id
        self._ui.active_task_id = task_id

    def _clear_active_task(self, task_id: str) -> None:
        if self._active_task_id == task_id:
            self._active_task_id = None
            self._ui.active_task_id = None
