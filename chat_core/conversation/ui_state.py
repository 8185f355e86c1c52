"""对话界面的状态容器。

只保存与生成流程相关的状态：消息列表、生成参数与生成中标记。
消息按时间顺序排列（最早在前），“最后一条消息”即列表末尾。
"""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional

AUTHOR_ME = "me"
AUTHOR_AI = "AI"
AUTHOR_SYSTEM = "System"


@dataclass(frozen=True)
class Message:
    author: str
    content: str
    timestamp: str = field(default_factory=lambda: datetime.now().strftime("%H:%M"))
    is_loading: bool = False


class ConversationUiState:
    """单个会话的 UI 状态。

    所有修改方法都在同一把锁下进行，流式消费与提示打字任务可以并发调用。
    """

    def __init__(self, initial_messages: Optional[List[Message]] = None):
        self._messages: List[Message] = list(initial_messages or [])
        self._lock = threading.Lock()
        self.is_generating: bool = False
        self.stream_response: bool = True
        self.temperature: float = 0.7
        self.max_tokens: int = 2000
        self.active_task_id: Optional[str] = None

    @property
    def messages(self) -> List[Message]:
        with self._lock:
            return list(self._messages)

    @property
    def last_message(self) -> Optional[Message]:
        with self._lock:
            return self._messages[-1] if self._messages else None

    def add_message(self, msg: Message) -> None:
        with self._lock:
            self._messages.append(msg)

    def clear_messages(self) -> None:
        with self._lock:
            self._messages.clear()

    def append_to_last_message(self, content: str) -> None:
        """把内容追加到最后一条消息，有内容后取消加载状态。"""

        with self._lock:
            if self._messages:
                last = self._messages[-1]
                self._messages[-1] = replace(last, content=last.content + content, is_loading=False)

    def update_last_message_loading_state(self, is_loading: bool) -> None:
        with self._lock:
            if self._messages:
                self._messages[-1] = replace(self._messages[-1], is_loading=is_loading)

    def replace_last_message_content(self, new_content: str) -> None:
        with self._lock:
            if self._messages:
                self._messages[-1] = replace(self._messages[-1], content=new_content)

    def remove_last_assistant_message(self, author_me: str = AUTHOR_ME) -> None:
        """移除最近一条既不是用户也不是系统提示的消息。"""

        with self._lock:
            for i in range(len(self._messages) - 1, -1, -1):
                author = self._messages[i].author
                if author != author_me and author != AUTHOR_SYSTEM:
                    del self._messages[i]
                    return
