"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护各协议族的角色 / 结束原因映射表 (registry)。
- 提供各协议族的具体实现 (openai_client、google_client)。
"""

from typing import Dict, Optional

from chat_core.domain.provider_setting import ProviderKind
from chat_core.infrastructure.network.http_client import HttpClient
from chat_core.infrastructure.network.sse_client import SseClient
from chat_core.providers.base import ProviderClient
from chat_core.providers.google_client import GoogleClient
from chat_core.providers.key_roulette import KeyRoulette
from chat_core.providers.openai_client import OpenAIClient


def create_provider(
    kind: "str | ProviderKind",
    sse_client: Optional[SseClient] = None,
    http_client: Optional[HttpClient] = None,
    key_roulette: Optional[KeyRoulette] = None,
) -> ProviderClient:
    """根据协议族创建 Provider 实例。

    Raises:
        ValueError: 未知的协议族。
    """

    provider_kind = ProviderKind.parse(kind)
    if provider_kind == ProviderKind.GOOGLE:
        return GoogleClient(http_client=http_client, sse_client=sse_client, key_roulette=key_roulette)
    return OpenAIClient(http_client=http_client, sse_client=sse_client, key_roulette=key_roulette)


def create_all_providers(
    sse_client: Optional[SseClient] = None,
    http_client: Optional[HttpClient] = None,
) -> Dict[ProviderKind, ProviderClient]:
    """为每个协议族创建一个共享同一 SseClient / HttpClient 的实例。"""

    sse = sse_client or SseClient()
    http = http_client or HttpClient()
    keys = KeyRoulette()
    return {kind: create_provider(kind, sse, http, keys) for kind in ProviderKind}


__all__ = ["ProviderClient", "OpenAIClient", "GoogleClient", "create_provider", "create_all_providers"]
