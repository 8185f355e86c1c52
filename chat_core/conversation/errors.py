"""会话层的错误提示与取消判定。"""

import asyncio
from typing import Dict, Optional

from chat_core.conversation.ui_state import AUTHOR_SYSTEM, ConversationUiState, Message
from chat_core.domain.exceptions import LlmError, LlmErrorKind
from chat_core.infrastructure.logging.logger import log_throwable_chain

_KIND_MESSAGES: Dict[LlmErrorKind, str] = {
    LlmErrorKind.NETWORK_TIMEOUT: "网络超时，请检查网络连接，或稍后重试",
    LlmErrorKind.NETWORK_CONNECTION: "网络错误，请检查网络连接，或尝试切换网络",
    LlmErrorKind.HTTP_STATUS: "请求失败（HTTP {status}），请稍后重试",
    LlmErrorKind.AUTHENTICATION: "API密钥无效或已过期，请检查您的API密钥",
    LlmErrorKind.RATE_LIMIT: "请求频率过高，请稍后再试",
    LlmErrorKind.SERVER_ERROR: "服务器错误，请稍后重试，或联系技术支持",
    LlmErrorKind.REQUEST_ERROR: "请求参数错误：{message}\n\n请检查输入内容，或联系技术支持",
    LlmErrorKind.CANCELLED: "",
    LlmErrorKind.UNKNOWN: "发生了意外错误，请重试操作，如问题持续请联系技术支持",
}


def format_error_message(error: BaseException) -> str:
    """把异常渲染为面向用户、带解决建议的提示文案。"""

    if isinstance(error, LlmError):
        template = _KIND_MESSAGES[error.kind]
        return template.format(
            status=error.status_code if error.status_code is not None else "?",
            message=error.message or "请求格式或参数有误",
        )
    text = str(error).lower()
    if "网络" in text or "connection" in text:
        return "网络错误，请检查网络连接后重试"
    return "系统错误，请重试操作，如问题持续请联系技术支持"


def is_cancellation_related(error: BaseException) -> bool:
    """异常本身或其 cause/context 链上存在取消时返回 True。"""

    current: Optional[BaseException] = error
    seen = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, asyncio.CancelledError):
            return True
        if isinstance(current, LlmError) and current.kind == LlmErrorKind.CANCELLED:
            return True
        current = current.__cause__ or current.__context__
    return False


def reset_generating(ui_state: ConversationUiState) -> None:
    ui_state.is_generating = False
    ui_state.update_last_message_loading_state(False)


def report_generation_failure(ui_state: ConversationUiState, error: BaseException, tag: str) -> None:
    """重置生成状态；非取消类错误追加一条系统提示。"""

    reset_generating(ui_state)
    if is_cancellation_related(error):
        return
    log_throwable_chain(tag, "Generation failed", error)
    ui_state.add_message(Message(AUTHOR_SYSTEM, format_error_message(error)))
