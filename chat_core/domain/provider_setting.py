"""Provider 设置。

ProviderSetting 描述一个后端（地址、密钥、代理、类型），由外部选择后
按调用传入核心层。核心层只读取它，从不修改，因此定义为不可变 dataclass。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from chat_core.domain.models import Model


class ProviderKind(str, Enum):
    """Provider 协议族，决定由哪个适配器处理。"""

    OPENAI = "openai"
    GOOGLE = "google"

    @classmethod
    def parse(cls, value: "str | ProviderKind") -> "ProviderKind":
        if isinstance(value, ProviderKind):
            return value
        return cls(value.strip().lower())


@dataclass(frozen=True)
class ProviderProxy:
    """HTTP 代理；可选的用户名/密码会拼进代理 URL。"""

    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    def to_url(self) -> str:
        auth = ""
        if self.username:
            auth = self.username
            if self.password:
                auth += f":{self.password}"
            auth += "@"
        return f"http://{auth}{self.host}:{self.port}"


@dataclass(frozen=True)
class ProviderSetting:
    """一个 Provider 的配置。

    - api_key: 一个或多个密钥，多个密钥之间用逗号/空白分隔，每次逻辑调用轮换一个。
    - chat_completions_path: 仅 OpenAI 兼容协议使用。
    """

    kind: ProviderKind
    api_key: str
    base_url: str = ""
    name: str = ""
    id: str = field(default_factory=lambda: str(uuid4()))
    chat_completions_path: str = "/chat/completions"
    proxy: Optional[ProviderProxy] = None
    models: List[Model] = field(default_factory=list)
    enabled: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", ProviderKind.parse(self.kind))
        if not self.name:
            object.__setattr__(self, "name", self.kind.value)

    @property
    def proxy_url(self) -> Optional[str]:
        return self.proxy.to_url() if self.proxy else None
