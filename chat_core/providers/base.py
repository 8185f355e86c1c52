"""Provider 抽象接口。

上层 ChatService 不直接依赖具体厂商的 HTTP 协议，而是依赖此协议：

- 每个协议族实现一个 ProviderClient（如 OpenAIClient、GoogleClient）。
- 负责：将统一的历史消息与生成参数转成具体 API 请求，并把响应/流式负载解析为 MessageChunk。

这样可以在不改上层代码的前提下接入更多协议族，分发只依赖 ProviderKind 标签。
"""

from typing import AsyncIterator, List, Protocol

from chat_core.domain.models import (
    ImageGenerationParams,
    ImageGenerationResult,
    MessageChunk,
    Model,
    TextGenerationParams,
    UIMessage,
)
from chat_core.domain.provider_setting import ProviderKind, ProviderSetting


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - kind: 所处理的协议族。
    - list_models / generate_text / stream_text / generate_image。
    """

    kind: ProviderKind

    async def list_models(self, setting: ProviderSetting) -> List[Model]:
        ...

    async def generate_text(
        self,
        setting: ProviderSetting,
        messages: List[UIMessage],
        params: TextGenerationParams,
    ) -> MessageChunk:
        """执行一次非流式调用，返回 choices[0].message 已填充的块。"""

        ...

    def stream_text(
        self,
        setting: ProviderSetting,
        messages: List[UIMessage],
        params: TextGenerationParams,
        task_id: str,
    ) -> AsyncIterator[MessageChunk]:
        """执行一次流式调用，逐步产出增量块，直到结束原因或连接关闭。"""

        ...

    async def generate_image(
        self,
        setting: ProviderSetting,
        params: ImageGenerationParams,
    ) -> ImageGenerationResult:
        ...
