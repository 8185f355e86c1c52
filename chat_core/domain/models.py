"""统一的对话与流式结果数据模型。

本模块定义了不同 Provider 之间共享的标准数据结构：

- UIMessage: 一条由若干 part（文本 / 图片）组成的消息，既可以是完整消息，也可以是流式增量。
- MessageChunk: 流式或非流式调用返回的统一块结构。
- ChatHistoryItem: 持久化层与传输层使用的扁平 {role, content} 结构。
- TextGenerationParams / ImageGenerationParams: 生成参数。

所有 Provider 适配器都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import uuid4


# 统一的消息角色（与持久化层的小写 role 字符串对应）
Role = Literal["system", "user", "assistant", "tool"]

_KNOWN_ROLES = ("system", "user", "assistant", "tool")

IMAGE_MARKER_PREFIX = "[image:"
_IMAGE_DATA_MARKER = "[image:data:image/"


def normalize_role(raw: Optional[str]) -> Role:
    """把任意 role 字符串规整为已知角色，未知值视为 user。"""

    value = (raw or "").strip().lower()
    if value in _KNOWN_ROLES:
        return value  # type: ignore[return-value]
    return "user"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    """图片片段，url 可以是 http(s) 地址或 data:image/...;base64,... 形式。"""

    url: str


MessagePart = Union[TextPart, ImagePart]


@dataclass
class UIMessage:
    """一条消息（完整消息或流式增量）。

    - role: 消息角色。
    - parts: 按顺序排列的文本 / 图片片段。
    """

    role: Role
    parts: List[MessagePart] = field(default_factory=list)

    def to_text(self) -> str:
        """拼接所有文本片段。"""

        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def has_non_text_parts(self) -> bool:
        return any(not isinstance(p, TextPart) for p in self.parts)

    @classmethod
    def text(cls, role: Role, content: str) -> "UIMessage":
        return cls(role=role, parts=[TextPart(content)] if content else [])


@dataclass
class MessageChoice:
    """单个候选。delta 与 message 二者恰好有一个非空。"""

    index: int
    delta: Optional[UIMessage] = None
    message: Optional[UIMessage] = None
    finish_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.delta is None) == (self.message is None):
            raise ValueError("exactly one of delta/message must be set")

    def text(self) -> str:
        msg = self.delta if self.delta is not None else self.message
        return msg.to_text() if msg is not None else ""


@dataclass
class MessageChunk:
    """流式返回中的一个块，或非流式调用的完整结果。

    块只在内存中流转，从不原样持久化。
    """

    id: str
    model_id: str
    choices: List[MessageChoice]
    usage: Optional[Dict[str, int]] = None

    def delta_text(self) -> str:
        """首个 choice 的增量文本；没有 choice 时为空串。"""

        if not self.choices:
            return ""
        return self.choices[0].text()

    @property
    def finish_reason(self) -> Optional[str]:
        if not self.choices:
            return None
        return self.choices[0].finish_reason


def new_chunk_id() -> str:
    return f"chunk-{uuid4().hex}"


@dataclass(frozen=True)
class ChatHistoryItem:
    """持久化/传输使用的扁平消息结构，按对话顺序（最早在前）排列。"""

    role: str
    content: str

    def to_ui_message(self) -> UIMessage:
        """转换为 UIMessage，并把 [image:data:image/...] 标记拆成图片片段。"""

        role = normalize_role(self.role)
        content = self.content
        if _IMAGE_DATA_MARKER not in content:
            return UIMessage(role=role, parts=[TextPart(content)])

        parts: List[MessagePart] = []
        cursor = 0
        while cursor < len(content):
            start = content.find(_IMAGE_DATA_MARKER, cursor)
            if start == -1:
                rest = content[cursor:]
                if rest:
                    parts.append(TextPart(rest))
                break
            if start > cursor:
                parts.append(TextPart(content[cursor:start]))
            end = content.find("]", start)
            if end == -1:
                parts.append(TextPart(content[cursor:]))
                break
            parts.append(ImagePart(content[start + len(IMAGE_MARKER_PREFIX):end]))
            cursor = end + 1
        return UIMessage(role=role, parts=parts)

    @classmethod
    def from_ui_message(cls, message: UIMessage) -> "ChatHistoryItem":
        pieces: List[str] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                pieces.append(part.text)
            elif isinstance(part, ImagePart):
                pieces.append(f"\n{IMAGE_MARKER_PREFIX}{part.url}]")
        return cls(role=message.role, content="".join(pieces))


class ModelType(str, Enum):
    CHAT = "chat"
    IMAGE = "image"


@dataclass(frozen=True)
class Model:
    model_id: str
    display_name: str = ""
    type: ModelType = ModelType.CHAT

    def __post_init__(self) -> None:
        if not self.display_name:
            object.__setattr__(self, "display_name", self.model_id)


@dataclass
class TextGenerationParams:
    """一次文本生成的参数，None 表示不下发该字段、由 Provider 使用默认值。"""

    model: Model
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    custom_headers: Dict[str, str] = field(default_factory=dict)
    custom_body: Dict[str, Any] = field(default_factory=dict)


class ImageAspectRatio(str, Enum):
    SQUARE = "square"
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"


@dataclass
class ImageGenerationParams:
    model: Model
    prompt: str
    num_of_images: int = 1
    aspect_ratio: ImageAspectRatio = ImageAspectRatio.SQUARE
    custom_headers: Dict[str, str] = field(default_factory=dict)
    custom_body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ImageGenerationItem:
    """data 为 base64 数据或图片 URL。"""

    data: str
    mime_type: str = "image/png"


@dataclass
class ImageGenerationResult:
    items: List[ImageGenerationItem]
