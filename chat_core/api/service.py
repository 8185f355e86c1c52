"""对外 API 服务模块。

ChatService 是 Provider 适配器之上的统一门面：
- 按 ProviderSetting.kind 选择适配器；
- 把扁平的 ChatHistoryItem 历史转换成 UIMessage；
- 流式接口只向外暴露文本增量，按 task_id 支持取消。
"""

import logging
from typing import AsyncIterator, Dict, List, Optional

from chat_core.domain.exceptions import LlmError, LlmErrorKind
from chat_core.domain.models import (
    ChatHistoryItem,
    ImageGenerationParams,
    ImageGenerationResult,
    MessageChunk,
    Model,
    TextGenerationParams,
    UIMessage,
)
from chat_core.domain.provider_setting import ProviderKind, ProviderSetting
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.network.sse_client import SseClient
from chat_core.providers import ProviderClient, create_all_providers
from chat_core.providers.key_roulette import split_keys


class ChatService:
    """聊天门面。

    Args:
        providers: 协议族到适配器的映射；为空时创建默认适配器。
        sse_client: 适配器共享的 SSE 客户端，用于按 task_id 取消。
    """

    def __init__(
        self,
        providers: Optional[Dict[ProviderKind, ProviderClient]] = None,
        sse_client: Optional[SseClient] = None,
    ):
        self._sse = sse_client or SseClient()
        self._providers = providers if providers is not None else create_all_providers(self._sse)

    def _provider_for(self, setting: ProviderSetting) -> ProviderClient:
        provider = self._providers.get(setting.kind)
        if provider is None:
            raise LlmError.request(f"Unsupported provider type: {setting.kind}")
        if not split_keys(setting.api_key):
            raise LlmError(LlmErrorKind.AUTHENTICATION, f"API key not set for provider {setting.name!r}")
        return provider

    @staticmethod
    def _to_messages(history: List[ChatHistoryItem]) -> List[UIMessage]:
        return [item.to_ui_message() for item in history]

    def stream_chunks(
        self,
        history: List[ChatHistoryItem],
        setting: ProviderSetting,
        params: TextGenerationParams,
        task_id: str,
    ) -> AsyncIterator[MessageChunk]:
        """返回完整 MessageChunk 的流。

        Raises:
            LlmError: 配置无效时立即抛出，而不是在首次迭代时。
        """

        provider = self._provider_for(setting)
        log_event(
            logging.INFO,
            "Starting stream",
            task_id=task_id,
            provider=setting.kind.value,
            model=params.model.model_id,
            history_size=len(history),
        )
        return provider.stream_text(setting, self._to_messages(history), params, task_id)

    def stream_chat(
        self,
        history: List[ChatHistoryItem],
        setting: ProviderSetting,
        params: TextGenerationParams,
        task_id: str,
    ) -> AsyncIterator[str]:
        """返回文本增量流；空增量会被过滤。"""

        chunks = self.stream_chunks(history, setting, params, task_id)
        return self._deltas(chunks)

    @staticmethod
    async def _deltas(chunks: AsyncIterator[MessageChunk]) -> AsyncIterator[str]:
        async for chunk in chunks:
            text = chunk.delta_text()
            if text:
                yield text

    async def generate_text(
        self,
        history: List[ChatHistoryItem],
        setting: ProviderSetting,
        params: TextGenerationParams,
    ) -> str:
        provider = self._provider_for(setting)
        chunk = await provider.generate_text(setting, self._to_messages(history), params)
        return chunk.choices[0].text() if chunk.choices else ""

    async def list_models(self, setting: ProviderSetting) -> List[Model]:
        return await self._provider_for(setting).list_models(setting)

    async def generate_image(
        self,
        setting: ProviderSetting,
        params: ImageGenerationParams,
    ) -> ImageGenerationResult:
        return await self._provider_for(setting).generate_image(setting, params)

    def cancel_streaming(self, task_id: str) -> None:
        """取消指定 task_id 的流；任务不存在时静默忽略。"""

        if self._sse.cancel(task_id):
            log_event(logging.INFO, "Stream cancelled", task_id=task_id)

    def cancel_all(self) -> None:
        self._sse.cancel_all()


_service: Optional[ChatService] = None


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        _service = ChatService()
    return _service
