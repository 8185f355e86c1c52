from typing import Protocol

from .models import ChatHistoryItem


class MessagePersistenceGateway(Protocol):
    """消息持久化抽象，由存储层实现。

    三个操作都必须可以重复调用；用相同内容再次 replace 不改变结果。
    """

    async def append_message(self, session_id: str, message: ChatHistoryItem) -> None:
        ...

    async def replace_last_assistant_message(self, session_id: str, message: ChatHistoryItem) -> None:
        ...

    async def remove_last_assistant_message(self, session_id: str) -> None:
        ...


class NoOpMessagePersistenceGateway:
    """不做任何持久化的实现，供没有存储的调用方使用。"""

    async def append_message(self, session_id: str, message: ChatHistoryItem) -> None:
        return None

    async def replace_last_assistant_message(self, session_id: str, message: ChatHistoryItem) -> None:
        return None

    async def remove_last_assistant_message(self, session_id: str) -> None:
        return None
