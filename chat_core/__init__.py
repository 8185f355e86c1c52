"""Chat Core 顶层包。

该包提供多 Provider 流式对话编排的核心实现，
包括配置加载、领域模型、Provider 适配、SSE 传输、
会话级任务管理、流式响应消费、回滚重新生成与持久化存储等能力。
"""

from chat_core.api.service import ChatService, get_default_service
from chat_core.conversation.logic import ConversationLogic
from chat_core.conversation.session_manager import SessionManager
from chat_core.conversation.task_registry import StreamingTaskRegistry

__all__ = [
    "ChatService",
    "get_default_service",
    "ConversationLogic",
    "SessionManager",
    "StreamingTaskRegistry",
]
