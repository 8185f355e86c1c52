"""发送与回滚用例。

两个用例都只负责“开流 + 持久化占位”，流的消费交给 StreamingResponseHandler。
"""

from dataclasses import dataclass
from typing import AsyncIterator, List, Optional
from uuid import uuid4

from chat_core.api.service import ChatService
from chat_core.domain.conversation import MessagePersistenceGateway
from chat_core.domain.models import ChatHistoryItem, TextGenerationParams
from chat_core.domain.provider_setting import ProviderSetting


@dataclass
class StreamOutput:
    stream: AsyncIterator[str]
    task_id: str


def _placeholder() -> ChatHistoryItem:
    return ChatHistoryItem(role="assistant", content="")


class SendMessageUseCase:
    def __init__(self, chat_service: ChatService, persistence_gateway: MessagePersistenceGateway):
        self._chat = chat_service
        self._gateway = persistence_gateway

    async def __call__(
        self,
        session_id: str,
        user_message: ChatHistoryItem,
        history: List[ChatHistoryItem],
        provider_setting: ProviderSetting,
        params: TextGenerationParams,
        task_id: Optional[str] = None,
    ) -> StreamOutput:
        """持久化用户消息与空的助手占位消息，然后为 history + [user_message] 开流。"""

        task_id = task_id or str(uuid4())
        await self._gateway.append_message(session_id, user_message)
        # 占位的 assistant 消息，等待流式结果补充
        await self._gateway.append_message(session_id, _placeholder())
        stream = self._chat.stream_chat(history + [user_message], provider_setting, params, task_id)
        return StreamOutput(stream=stream, task_id=task_id)


class RollbackMessageUseCase:
    def __init__(self, chat_service: ChatService, persistence_gateway: MessagePersistenceGateway):
        self._chat = chat_service
        self._gateway = persistence_gateway

    async def __call__(
        self,
        session_id: str,
        history: List[ChatHistoryItem],
        provider_setting: ProviderSetting,
        params: TextGenerationParams,
    ) -> StreamOutput:
        """先开流，成功后再删除最后一条助手消息并追加新的占位消息。

        Raises:
            LlmError: 开流失败，此时持久化层保持不变。
        """

        task_id = str(uuid4())
        stream = self._chat.stream_chat(history, provider_setting, params, task_id)
        await self._gateway.remove_last_assistant_message(session_id)
        await self._gateway.append_message(session_id, _placeholder())
        return StreamOutput(stream=stream, task_id=task_id)
