"""命令行流式对话示例。

用法：
    OPENAI_API_KEY=sk-... python examples/stream_demo.py "你好"
    GEMINI_API_KEY=... python examples/stream_demo.py --google "你好"
"""

import asyncio
import os
import sys

from chat_core import SessionManager, get_default_service
from chat_core.conversation.ui_state import AUTHOR_SYSTEM
from chat_core.domain.models import Model
from chat_core.domain.provider_setting import ProviderKind, ProviderSetting
from chat_core.infrastructure.storage.json_store import JsonMessageStore


async def main(argv):
    google = "--google" in argv
    prompt = " ".join(a for a in argv if a != "--google") or "你好"
    if google:
        setting = ProviderSetting(kind=ProviderKind.GOOGLE, api_key=os.getenv("GEMINI_API_KEY", ""))
        model = Model("gemini-1.5-flash")
    else:
        setting = ProviderSetting(
            kind=ProviderKind.OPENAI,
            api_key=os.getenv("OPENAI_API_KEY", ""),
            base_url=os.getenv("OPENAI_BASE_URL", ""),
        )
        model = Model(os.getenv("OPENAI_MODEL", "gpt-4o-mini"))

    store = JsonMessageStore()
    manager = SessionManager(get_default_service(), store, on_session_updated=store.touch_session)
    logic = manager.switch_to("demo")
    try:
        answer = await logic.process_message(prompt, setting, model)
    finally:
        manager.close()

    last = logic.ui_state.last_message
    if last is not None and last.author == AUTHOR_SYSTEM:
        print(last.content, file=sys.stderr)
        return 1
    print(answer)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
