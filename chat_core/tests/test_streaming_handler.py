import asyncio

import pytest

from chat_core.conversation.streaming_handler import StreamingResponseHandler
from chat_core.conversation.ui_state import ConversationUiState, Message
from chat_core.domain.exceptions import LlmError, LlmErrorKind


class RecordingGateway:
    def __init__(self):
        self.replaced = []
        self.appended = []
        self.removed = 0

    async def append_message(self, session_id, message):
        self.appended.append((session_id, message))

    async def replace_last_assistant_message(self, session_id, message):
        self.replaced.append((session_id, message.content))

    async def remove_last_assistant_message(self, session_id):
        self.removed += 1


async def deltas(items):
    for item in items:
        yield item
        await asyncio.sleep(0)


def make(ui=None, gateway=None, **kw):
    ui = ui or ConversationUiState([Message("me", "Hello"), Message("AI", "", is_loading=True)])
    gateway = gateway or RecordingGateway()
    updated = []

    async def on_updated(session_id):
        updated.append(session_id)

    kw.setdefault("persist_interval", 0.0)
    kw.setdefault("char_delay", 0.0)
    kw.setdefault("hint_text", "slow?")
    handler = StreamingResponseHandler(ui, gateway, "s1", on_updated, **kw)
    return handler, ui, gateway, updated


async def test_final_write_is_full_concatenation():
    handler, ui, gateway, updated = make()
    ui.is_generating = True

    result = await handler.handle_streaming(deltas(["Hi", "", " there"]), lambda: False)

    assert result == "Hi there"
    assert gateway.replaced[-1] == ("s1", "Hi there")
    assert ui.last_message.content == "Hi there"
    assert not ui.last_message.is_loading
    assert ui.is_generating is False
    assert updated == ["s1"]


async def test_throttle_persists_first_delta_then_waits_for_interval():
    handler, ui, gateway, _ = make(persist_interval=10.0, clock=lambda: 100.0)

    result = await handler.handle_streaming(deltas(["a", "b", "c"]), lambda: False)

    assert result == "abc"
    assert gateway.replaced == [("s1", "a"), ("s1", "abc")]


async def test_whitespace_only_answer_is_still_written_in_full():
    handler, ui, gateway, updated = make(persist_interval=10.0, clock=lambda: 100.0)

    result = await handler.handle_streaming(deltas([" ", "\n"]), lambda: False)

    assert result == " \n"
    assert gateway.replaced[-1] == ("s1", " \n")
    assert updated == ["s1"]


async def test_superseded_join_leaves_newer_generation_alone():
    handler, ui, gateway, updated = make()
    ui.is_generating = True
    jobs = handler.start(deltas(["old"]), lambda: False)
    jobs.streaming_job.cancel()
    jobs.hint_job.cancel()
    ui.add_message(Message("AI", "", is_loading=True))

    result = await handler.join(jobs, lambda: False, is_superseded=lambda: True)

    assert result == ""
    assert ui.is_generating is True
    assert ui.last_message.is_loading
    assert updated == []


async def test_typing_mode_reveals_characters():
    handler, ui, gateway, _ = make(char_delay=0.001)

    result = await handler.handle_streaming(deltas(["Hi", " there"]), lambda: False)

    assert result == "Hi there"
    assert ui.last_message.content == "Hi there"
    # 每个字符一次节流写入，再加一次最终写入
    assert len(gateway.replaced) == len("Hi there") + 1


async def test_cancel_predicate_suppresses_final_write():
    handler, ui, gateway, updated = make()
    cancelled = [False]

    async def stream():
        yield "Hi"
        cancelled[0] = True
        yield " there"

    result = await handler.handle_streaming(stream(), lambda: cancelled[0])

    assert result == ""
    assert gateway.replaced == [("s1", "Hi")]
    assert updated == []
    assert ui.is_generating is False


async def test_cancelling_streaming_job_returns_empty_and_joins_hint():
    handler, ui, gateway, updated = make()
    gate = asyncio.Event()

    async def stream():
        yield "Hi"
        await gate.wait()
        yield "never"

    jobs = handler.start(stream(), lambda: False)
    while not gateway.replaced:
        await asyncio.sleep(0)
    jobs.streaming_job.cancel()

    assert await handler.join(jobs, lambda: False) == ""
    assert jobs.hint_job.done()
    assert gateway.replaced == [("s1", "Hi")]
    assert updated == []


async def test_mid_stream_failure_propagates():
    handler, ui, gateway, updated = make()

    async def stream():
        yield "Hi"
        raise LlmError.from_status(500, "boom")

    with pytest.raises(LlmError) as ei:
        await handler.handle_streaming(stream(), lambda: False)

    assert ei.value.kind == LlmErrorKind.SERVER_ERROR
    assert gateway.replaced == [("s1", "Hi")]
    assert updated == []


async def test_cancellation_shaped_failure_is_not_an_error():
    handler, ui, gateway, updated = make()

    async def stream():
        yield "Hi"
        raise LlmError(LlmErrorKind.CANCELLED)

    assert await handler.handle_streaming(stream(), lambda: False) == ""
    assert updated == []


async def test_non_typing_mode_shows_hint_then_full_answer():
    handler, ui, gateway, _ = make()
    ui.stream_response = False
    snapshots = []

    async def stream():
        yield "Hi"
        for _ in range(3):
            await asyncio.sleep(0)
        snapshots.append(ui.last_message.content)
        yield " there"

    result = await handler.handle_streaming(stream(), lambda: False)

    assert result == "Hi there"
    assert snapshots == ["slow?"]
    assert ui.last_message.content == "Hi there"
    assert not ui.last_message.is_loading


async def test_hint_job_is_cancelled_when_never_requested():
    handler, ui, gateway, _ = make()

    jobs = handler.start(deltas(["Hi"]), lambda: False)
    assert await handler.join(jobs, lambda: False) == "Hi"
    assert jobs.hint_job.cancelled()


async def test_cancelling_the_joiner_cancels_both_jobs():
    handler, ui, gateway, _ = make()
    gate = asyncio.Event()

    async def stream():
        yield "Hi"
        await gate.wait()

    jobs = handler.start(stream(), lambda: False)
    joiner = asyncio.create_task(handler.join(jobs, lambda: False))
    while not gateway.replaced:
        await asyncio.sleep(0)
    joiner.cancel()

    with pytest.raises(asyncio.CancelledError):
        await joiner
    assert jobs.streaming_job.cancelled()
    assert jobs.hint_job.cancelled()
