import asyncio

from chat_core.conversation.session_manager import SessionManager
from chat_core.domain.exceptions import LlmError
from chat_core.domain.models import ChatHistoryItem, Model
from chat_core.domain.provider_setting import ProviderSetting
from chat_core.infrastructure.storage.json_store import JsonMessageStore

SETTING = ProviderSetting(kind="openai", api_key="k")
MODEL = Model("gpt-test")
BLOCK = "block"


class ScriptedChat:
    """按调用顺序返回脚本化的增量流；BLOCK 表示一直挂起直到被取消。"""

    def __init__(self, *scripts, error=None):
        self.scripts = list(scripts)
        self.error = error
        self.calls = []
        self.cancelled = []
        self.cancel_all_calls = 0

    def stream_chat(self, history, setting, params, task_id):
        if self.error is not None:
            raise self.error
        self.calls.append((list(history), task_id))
        return self._stream(self.scripts.pop(0))

    async def _stream(self, script):
        if script == BLOCK:
            await asyncio.Event().wait()
        for delta in script:
            yield delta
            await asyncio.sleep(0)

    def cancel_streaming(self, task_id):
        self.cancelled.append(task_id)

    def cancel_all(self):
        self.cancel_all_calls += 1


def make_manager(chat, store):
    return SessionManager(
        chat,
        store,
        on_session_updated=store.touch_session,
        persist_interval=0.0,
        char_delay=0.0,
        hint_text="slow?",
    )


async def wait_until(predicate, attempts=500):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


async def test_send_persists_full_answer(tmp_path):
    store = JsonMessageStore(root=tmp_path)
    chat = ScriptedChat(["Hi", " there"])
    logic = make_manager(chat, store).switch_to("S1")

    assert await logic.process_message("Hello", SETTING, MODEL) == "Hi there"

    messages = store.list_messages("S1")
    assert [(m.role, m.content) for m in messages] == [("user", "Hello"), ("assistant", "Hi there")]
    assert messages[-1].status == "done"
    assert store.get_updated_at("S1") is not None
    assert chat.calls[0][0] == [ChatHistoryItem("user", "Hello")]
    assert [(m.author, m.content) for m in logic.ui_state.messages] == [("me", "Hello"), ("AI", "Hi there")]
    assert logic.ui_state.is_generating is False


async def test_history_excludes_system_messages_and_keeps_order(tmp_path):
    store = JsonMessageStore(root=tmp_path)
    chat = ScriptedChat(["one"], ["two"])
    logic = make_manager(chat, store).switch_to("S1")

    await logic.process_message("first", SETTING, MODEL)
    await logic.process_message("second", SETTING, MODEL)

    history = chat.calls[1][0]
    assert history == [
        ChatHistoryItem("user", "first"),
        ChatHistoryItem("assistant", "one"),
        ChatHistoryItem("user", "second"),
    ]


async def test_switching_session_cancels_previous_task(tmp_path):
    store = JsonMessageStore(root=tmp_path)
    chat = ScriptedChat(BLOCK, ["Hi", " there"])
    manager = make_manager(chat, store)

    s1 = manager.switch_to("S1")
    t1 = asyncio.create_task(s1.process_message("Hello", SETTING, MODEL))
    await wait_until(lambda: manager.registry.has_tasks("S1"))

    s2 = manager.switch_to("S2")
    assert not manager.registry.has_tasks("S1")
    assert await t1 == ""
    assert s1.ui_state.is_generating is False

    assert await s2.process_message("Hello", SETTING, MODEL) == "Hi there"
    assert [(m.role, m.content) for m in store.list_messages("S1")] == [("user", "Hello"), ("assistant", "")]
    assert store.list_messages("S2")[-1].content == "Hi there"
    assert manager.current_session_id == "S2"


async def test_cancel_streaming_is_silent(tmp_path):
    store = JsonMessageStore(root=tmp_path)
    chat = ScriptedChat(BLOCK)
    manager = make_manager(chat, store)
    logic = manager.switch_to("S1")

    task = asyncio.create_task(logic.process_message("Hello", SETTING, MODEL))
    await wait_until(lambda: manager.registry.has_tasks("S1"))
    task_id = logic.active_task_id
    await logic.cancel_streaming()

    assert await task == ""
    assert chat.cancelled == [task_id]
    assert logic.ui_state.is_generating is False
    assert all(m.author != "System" for m in logic.ui_state.messages)


async def test_send_failure_shows_system_message(tmp_path):
    store = JsonMessageStore(root=tmp_path)
    chat = ScriptedChat(error=LlmError.from_status(429, "slow down"))
    logic = make_manager(chat, store).switch_to("S1")

    assert await logic.process_message("Hello", SETTING, MODEL) == ""
    assert logic.ui_state.last_message.author == "System"
    assert "请求频率过高" in logic.ui_state.last_message.content
    assert logic.ui_state.is_generating is False


async def test_send_without_provider(tmp_path):
    logic = make_manager(ScriptedChat(), JsonMessageStore(root=tmp_path)).switch_to("S1")

    assert await logic.process_message("Hello", None, MODEL) == ""
    assert [(m.author, m.content) for m in logic.ui_state.messages] == [
        ("me", "Hello"),
        ("System", "No AI Provider configured."),
    ]


async def test_close_cancels_everything(tmp_path):
    store = JsonMessageStore(root=tmp_path)
    chat = ScriptedChat(BLOCK)
    manager = make_manager(chat, store)
    logic = manager.switch_to("S1")

    task = asyncio.create_task(logic.process_message("Hello", SETTING, MODEL))
    await wait_until(lambda: manager.registry.has_tasks("S1"))
    manager.close()

    assert await task == ""
    assert chat.cancel_all_calls == 1
    assert manager.current_session_id is None


async def test_second_send_replaces_running_one_without_touching_its_state(tmp_path):
    store = JsonMessageStore(root=tmp_path)
    chat = ScriptedChat(BLOCK, BLOCK)
    manager = make_manager(chat, store)
    logic = manager.switch_to("S1")

    t1 = asyncio.create_task(logic.process_message("first", SETTING, MODEL))
    await wait_until(lambda: manager.registry.has_tasks("S1"))
    first_task_id = logic.active_task_id

    t2 = asyncio.create_task(logic.process_message("second", SETTING, MODEL))
    assert await t1 == ""
    await wait_until(lambda: manager.registry.has_tasks("S1") and logic.active_task_id not in (None, first_task_id))

    ui = logic.ui_state
    assert not t2.done()
    assert ui.is_generating is True
    assert (ui.last_message.author, ui.last_message.is_loading) == ("AI", True)
    assert not ui.messages[1].is_loading
    assert all(m.author != "System" for m in ui.messages)

    await logic.cancel_streaming()
    assert await t2 == ""
    assert ui.is_generating is False
    assert [(m.author, m.content) for m in ui.messages] == [("me", "first"), ("AI", ""), ("me", "second"), ("AI", "")]
