"""Provider 协议族配置。

本模块集中放置各协议族的“表”：

- 默认 base_url；
- 统一角色 -> 厂商角色的映射（例如 Gemini 用 model 表示助手）；
- 厂商结束原因 -> 统一结束原因的映射。

适配器只查表，不在代码里硬编码角色或结束原因，便于新增协议族。
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from chat_core.domain.provider_setting import ProviderKind


@dataclass(frozen=True)
class ProviderConfig:
    """某个协议族的整体配置。

    role_map 中值为 None 的角色不作为对话消息发送（例如 Gemini 的 system
    会被提升为 systemInstruction）。
    """

    kind: ProviderKind
    default_base_url: str
    role_map: Mapping[str, Optional[str]]
    finish_reason_map: Mapping[str, str]

    def wire_role(self, role: str) -> Optional[str]:
        return self.role_map.get(role, self.role_map["user"])

    def finish_reason(self, raw: Optional[str]) -> Optional[str]:
        if raw is None:
            return None
        return self.finish_reason_map.get(raw, raw.lower())


OPENAI_CONFIG = ProviderConfig(
    kind=ProviderKind.OPENAI,
    default_base_url="https://api.openai.com/v1",
    role_map={
        "system": "system",
        "user": "user",
        "assistant": "assistant",
        "tool": "tool",
    },
    finish_reason_map={},
)

GOOGLE_CONFIG = ProviderConfig(
    kind=ProviderKind.GOOGLE,
    default_base_url="https://generativelanguage.googleapis.com/v1beta",
    role_map={
        "system": None,
        "user": "user",
        "assistant": "model",
        "tool": "user",
    },
    finish_reason_map={
        "STOP": "stop",
        "MAX_TOKENS": "length",
        "SAFETY": "content_filter",
        "RECITATION": "content_filter",
    },
)


PROVIDER_REGISTRY: Dict[ProviderKind, ProviderConfig] = {
    ProviderKind.OPENAI: OPENAI_CONFIG,
    ProviderKind.GOOGLE: GOOGLE_CONFIG,
}


def get_provider_config(kind: "str | ProviderKind") -> ProviderConfig:
    """根据类型获取 ProviderConfig，名称不区分大小写。"""

    try:
        return PROVIDER_REGISTRY[ProviderKind.parse(kind)]
    except (KeyError, ValueError):
        raise KeyError(f"Unknown provider: {kind!r}")
