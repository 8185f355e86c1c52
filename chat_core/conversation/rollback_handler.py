"""回滚并重新生成最后一条回答。"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from chat_core.conversation.errors import report_generation_failure, reset_generating
from chat_core.conversation.send_message import RollbackMessageUseCase
from chat_core.conversation.streaming_handler import CancelledCheck, StreamingJobs, StreamingResponseHandler
from chat_core.conversation.ui_state import AUTHOR_AI, AUTHOR_ME, AUTHOR_SYSTEM, ConversationUiState, Message
from chat_core.domain.models import ChatHistoryItem, Model, TextGenerationParams
from chat_core.domain.provider_setting import ProviderSetting
from chat_core.infrastructure.logging.logger import log_event

NO_PROVIDER_MESSAGE = "No AI Provider configured."


def build_regenerate_history(messages: List[Message], author_me: str = AUTHOR_ME) -> Optional[List[ChatHistoryItem]]:
    """去掉系统提示与最后一条助手回答，得到重新生成使用的上下文。

    Returns:
        上下文消息（最早在前）；剩余消息中没有用户消息时返回 None。
    """

    visible = [m for m in messages if m.author != AUTHOR_SYSTEM]
    last_assistant = next((i for i in range(len(visible) - 1, -1, -1) if visible[i].author != author_me), None)
    if last_assistant is not None:
        visible = visible[:last_assistant] + visible[last_assistant + 1:]
    if not any(m.author == author_me for m in visible):
        return None
    return [
        ChatHistoryItem(role="user" if m.author == author_me else "assistant", content=m.content)
        for m in visible
    ]


@dataclass
class RegenerateRun:
    """一次已经开始的重新生成。jobs 需由调用方登记到任务注册表。"""

    task_id: str
    jobs: StreamingJobs
    handler: "RollbackHandler"
    is_cancelled: CancelledCheck
    is_superseded: Optional[CancelledCheck] = None

    async def wait(self) -> str:
        return await self.handler._join(self)


class RollbackHandler:
    def __init__(
        self,
        ui_state: ConversationUiState,
        rollback_message_use_case: RollbackMessageUseCase,
        streaming_response_handler: StreamingResponseHandler,
        session_id: str,
        author_me: str = AUTHOR_ME,
    ):
        self._ui = ui_state
        self._rollback = rollback_message_use_case
        self._streaming = streaming_response_handler
        self._session_id = session_id
        self._author_me = author_me

    async def rollback_and_regenerate(
        self,
        provider_setting: Optional[ProviderSetting],
        model: Optional[Model],
        is_cancelled: CancelledCheck,
        on_prepared: Optional[Callable[[], None]] = None,
        is_superseded: Optional[CancelledCheck] = None,
    ) -> Optional[RegenerateRun]:
        """开始重新生成。

        没有可重新生成的内容、未配置 Provider 或开流失败时返回 None；
        未配置 Provider 或开流失败时会在界面上追加一条系统提示。
        确认要重新生成后、改动界面之前调用 on_prepared。
        """

        messages = self._ui.messages
        if not any(m.author == self._author_me for m in messages):
            return None

        if provider_setting is None or model is None:
            self._ui.add_message(Message(AUTHOR_SYSTEM, NO_PROVIDER_MESSAGE))
            return None

        history = build_regenerate_history(messages, self._author_me)
        if history is None:
            return None
        if on_prepared is not None:
            on_prepared()

        try:
            self._ui.is_generating = True
            params = TextGenerationParams(
                model=model,
                temperature=self._ui.temperature,
                max_tokens=self._ui.max_tokens,
            )
            log_event(
                logging.INFO,
                "Rolling back last answer",
                session_id=self._session_id,
                history_size=len(history),
            )
            output = await self._rollback(self._session_id, history, provider_setting, params)
            if is_superseded is not None and is_superseded():
                return None

            self._ui.remove_last_assistant_message(self._author_me)
            self._ui.add_message(Message(AUTHOR_AI, "", is_loading=True))
            self._ui.active_task_id = output.task_id
            jobs = self._streaming.start(output.stream, is_cancelled)
        except asyncio.CancelledError:
            reset_generating(self._ui)
            raise
        except Exception as e:
            report_generation_failure(self._ui, e, "RollbackHandler")
            return None
        return RegenerateRun(
            task_id=output.task_id,
            jobs=jobs,
            handler=self,
            is_cancelled=is_cancelled,
            is_superseded=is_superseded,
        )

    async def _join(self, run: RegenerateRun) -> str:
        try:
            return await self._streaming.join(run.jobs, run.is_cancelled, run.is_superseded)
        except asyncio.CancelledError:
            reset_generating(self._ui)
            raise
        except Exception as e:
            report_generation_failure(self._ui, e, "RollbackHandler")
            return ""
