"""会话切换。

SessionManager 为每个会话缓存一个 ConversationLogic，所有会话共享同一个
StreamingTaskRegistry 与 ChatService。切换到其他会话时取消前一个会话的任务。
"""

import logging
from typing import Dict, Optional

from chat_core.api.service import ChatService
from chat_core.conversation.logic import ConversationLogic
from chat_core.conversation.streaming_handler import SessionUpdatedCallback
from chat_core.conversation.task_registry import StreamingTaskRegistry
from chat_core.conversation.ui_state import ConversationUiState
from chat_core.domain.conversation import MessagePersistenceGateway
from chat_core.infrastructure.logging.logger import log_event


class SessionManager:
    def __init__(
        self,
        chat_service: ChatService,
        persistence_gateway: Optional[MessagePersistenceGateway] = None,
        task_registry: Optional[StreamingTaskRegistry] = None,
        on_session_updated: Optional[SessionUpdatedCallback] = None,
        **streaming_options,
    ):
        self._chat = chat_service
        self._gateway = persistence_gateway
        self._registry = task_registry or StreamingTaskRegistry()
        self._on_session_updated = on_session_updated
        self._streaming_options = streaming_options
        self._sessions: Dict[str, ConversationLogic] = {}
        self._current: Optional[str] = None

    @property
    def registry(self) -> StreamingTaskRegistry:
        return self._registry

    @property
    def current_session_id(self) -> Optional[str]:
        return self._current

    def switch_to(self, session_id: str, ui_state: Optional[ConversationUiState] = None) -> ConversationLogic:
        """切换当前会话并返回其业务逻辑对象；前一个会话正在进行的生成会被取消。"""

        previous = self._current
        if previous is not None and previous != session_id:
            self._registry.cancel(previous)
            log_event(logging.INFO, "Switched session", previous=previous, current=session_id)
        self._current = session_id
        return self.logic_for(session_id, ui_state)

    def logic_for(self, session_id: str, ui_state: Optional[ConversationUiState] = None) -> ConversationLogic:
        logic = self._sessions.get(session_id)
        if logic is None or (ui_state is not None and ui_state is not logic.ui_state):
            logic = ConversationLogic(
                ui_state or ConversationUiState(),
                session_id,
                self._chat,
                self._registry,
                persistence_gateway=self._gateway,
                on_session_updated=self._on_session_updated,
                **self._streaming_options,
            )
            self._sessions[session_id] = logic
        return logic

    def forget(self, session_id: str) -> None:
        """删除会话时调用：取消其任务并丢弃缓存。"""

        self._registry.cancel(session_id)
        self._sessions.pop(session_id, None)
        if self._current == session_id:
            self._current = None

    def close(self) -> None:
        """整体销毁：取消所有会话的任务与所有网络连接。"""

        self._registry.clear()
        self._chat.cancel_all()
        self._sessions.clear()
        self._current = None
