import asyncio
import json
import os
import shutil
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.exceptions import StoreError
from chat_core.domain.models import ChatHistoryItem

# 助手消息状态：空内容为 sending，流式中为 streaming，写入最终内容后为 done
STATUS_SENDING = "sending"
STATUS_STREAMING = "streaming"
STATUS_DONE = "done"


@dataclass
class StoredMessage:
    id: str
    session_id: str
    role: str
    content: str
    status: str
    created_at: datetime


def _utc_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class JsonMessageStore:
    """基于 JSON 文件的消息持久化网关。

    每个会话一个目录：sessions/<id>/messages.json 保存消息列表，
    meta.json 保存 updated_at。写入先落临时文件再 os.replace，保证原子性。
    文件 I/O 通过 asyncio.to_thread 移出事件循环。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._sessions_root = self._root / "sessions"
        self._sessions_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    # ---- MessagePersistenceGateway ----

    async def append_message(self, session_id: str, message: ChatHistoryItem) -> None:
        await asyncio.to_thread(self._append_sync, session_id, message)

    async def replace_last_assistant_message(self, session_id: str, message: ChatHistoryItem) -> None:
        await asyncio.to_thread(self._replace_sync, session_id, message)

    async def remove_last_assistant_message(self, session_id: str) -> None:
        await asyncio.to_thread(self._remove_sync, session_id)

    # ---- 读取与会话维护 ----

    def list_messages(self, session_id: str) -> List[StoredMessage]:
        with self._lock:
            return [self._to_message(d) for d in self._read_messages(session_id)]

    def get_updated_at(self, session_id: str) -> Optional[datetime]:
        meta_path = self._sessions_root / session_id / "meta.json"
        if not meta_path.exists():
            return None
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        return datetime.fromisoformat(str(data["updated_at"]).replace("Z", "+00:00"))

    async def touch_session(self, session_id: str) -> None:
        """刷新会话的 updated_at，用于会话列表排序。"""

        await asyncio.to_thread(self._touch_sync, session_id)

    def delete_session(self, session_id: str) -> None:
        sdir = self._sessions_root / session_id
        if not sdir.exists():
            raise StoreError(code="SESSION_NOT_FOUND", message=session_id)
        try:
            shutil.rmtree(sdir)
        except OSError as e:
            raise StoreError(code="STORE_DELETE_ERROR", message=str(e))

    # ---- 同步实现 ----

    def _append_sync(self, session_id: str, message: ChatHistoryItem) -> None:
        with self._lock:
            items = self._read_messages(session_id)
            items.append(self._new_record(session_id, message))
            self._write_messages(session_id, items)
            self._write_meta(session_id)

    def _replace_sync(self, session_id: str, message: ChatHistoryItem) -> None:
        with self._lock:
            items = self._read_messages(session_id)
            for data in reversed(items):
                if data.get("role") == "assistant":
                    data["content"] = message.content
                    data["status"] = STATUS_STREAMING if message.content else STATUS_SENDING
                    self._write_messages(session_id, items)
                    return
            items.append(self._new_record(session_id, message))
            self._write_messages(session_id, items)
            self._write_meta(session_id)

    def _remove_sync(self, session_id: str) -> None:
        with self._lock:
            items = self._read_messages(session_id)
            for idx in range(len(items) - 1, -1, -1):
                if items[idx].get("role") == "assistant":
                    del items[idx]
                    self._write_messages(session_id, items)
                    return

    def _touch_sync(self, session_id: str) -> None:
        with self._lock:
            items = self._read_messages(session_id)
            for data in reversed(items):
                if data.get("role") == "assistant":
                    if data.get("content"):
                        data["status"] = STATUS_DONE
                        self._write_messages(session_id, items)
                    break
            self._write_meta(session_id)

    def _new_record(self, session_id: str, message: ChatHistoryItem) -> Dict[str, Any]:
        role = message.role.lower()
        if role == "assistant":
            status = STATUS_STREAMING if message.content else STATUS_SENDING
        else:
            status = STATUS_DONE
        return {
            "id": f"m-{uuid4().hex}",
            "session_id": session_id,
            "role": role,
            "content": message.content,
            "status": status,
            "created_at": _utc_iso(datetime.now(timezone.utc)),
        }

    def _read_messages(self, session_id: str) -> List[Dict[str, Any]]:
        path = self._sessions_root / session_id / "messages.json"
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        if not isinstance(data, list):
            raise StoreError(code="STORE_READ_ERROR", message=f"{path} is not a list")
        return data

    def _write_messages(self, session_id: str, items: List[Dict[str, Any]]) -> None:
        self._atomic_write(session_id, "messages.json", items)

    def _write_meta(self, session_id: str) -> None:
        self._atomic_write(
            session_id,
            "meta.json",
            {"id": session_id, "updated_at": _utc_iso(datetime.now(timezone.utc))},
        )

    def _atomic_write(self, session_id: str, name: str, obj: Any) -> None:
        sdir = self._sessions_root / session_id
        sdir.mkdir(parents=True, exist_ok=True)
        target = sdir / name
        tmp_path = sdir / f"{name}.{uuid4().hex}.tmp"
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, target)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> StoredMessage:
        return StoredMessage(
            id=data["id"],
            session_id=data["session_id"],
            role=data["role"],
            content=data.get("content") or "",
            status=data.get("status") or STATUS_DONE,
            created_at=datetime.fromisoformat(str(data["created_at"]).replace("Z", "+00:00")),
        )
