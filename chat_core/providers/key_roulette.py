"""API Key 轮换。

ProviderSetting.api_key 可以包含多个密钥（逗号或空白分隔）。
每次逻辑调用（list_models / generate_text / stream_text / generate_image）
调用一次 next()，按轮询顺序取一个密钥；网络重试不应再次调用。
"""

import re
import threading
from typing import Dict, List

_SPLIT_RE = re.compile(r"[\s,]+")


def split_keys(raw: str) -> List[str]:
    return [k for k in _SPLIT_RE.split(raw or "") if k]


class KeyRoulette:
    def __init__(self):
        self._cursors: Dict[str, int] = {}
        self._lock = threading.Lock()

    def next(self, raw_keys: str) -> str:
        """返回下一个密钥；只有一个密钥时总是返回它，没有密钥时返回空串。"""

        keys = split_keys(raw_keys)
        if not keys:
            return ""
        if len(keys) == 1:
            return keys[0]
        with self._lock:
            cursor = self._cursors.get(raw_keys, 0)
            self._cursors[raw_keys] = (cursor + 1) % len(keys)
        return keys[cursor % len(keys)]
