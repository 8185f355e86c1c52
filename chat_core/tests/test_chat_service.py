import pytest

from chat_core.api.service import ChatService
from chat_core.domain.exceptions import LlmError, LlmErrorKind
from chat_core.domain.models import (
    ChatHistoryItem,
    ImagePart,
    MessageChoice,
    MessageChunk,
    Model,
    TextGenerationParams,
    UIMessage,
)
from chat_core.domain.provider_setting import ProviderKind, ProviderSetting
from chat_core.infrastructure.network.sse_client import SseClient


class FakeProvider:
    kind = ProviderKind.OPENAI

    def __init__(self):
        self.messages = None
        self.task_id = None

    async def stream_text(self, setting, messages, params, task_id):
        self.messages = messages
        self.task_id = task_id
        for text in ["", "a", "b"]:
            yield MessageChunk(id="c", model_id="m", choices=[MessageChoice(index=0, delta=UIMessage.text("assistant", text))])

    async def generate_text(self, setting, messages, params):
        return MessageChunk(id="c", model_id="m", choices=[MessageChoice(index=0, message=UIMessage.text("assistant", "done"))])

    async def list_models(self, setting):
        return [Model("m1")]


PARAMS = TextGenerationParams(model=Model("m1"))


def make_service(provider=None):
    return ChatService(providers={ProviderKind.OPENAI: provider or FakeProvider()}, sse_client=SseClient())


async def test_stream_chat_yields_non_empty_text_deltas():
    provider = FakeProvider()
    service = make_service(provider)
    history = [ChatHistoryItem("user", "see\n[image:data:image/png;base64,AAAA]")]

    deltas = [d async for d in service.stream_chat(history, ProviderSetting(kind="openai", api_key="k"), PARAMS, "t1")]

    assert deltas == ["a", "b"]
    assert provider.task_id == "t1"
    assert provider.messages[0].parts[-1] == ImagePart("data:image/png;base64,AAAA")


def test_stream_chat_validates_eagerly():
    service = make_service()
    with pytest.raises(LlmError) as ei:
        service.stream_chat([], ProviderSetting(kind="openai", api_key=" "), PARAMS, "t1")
    assert ei.value.kind == LlmErrorKind.AUTHENTICATION

    with pytest.raises(LlmError) as ei:
        service.stream_chat([], ProviderSetting(kind="google", api_key="k"), PARAMS, "t1")
    assert ei.value.kind == LlmErrorKind.REQUEST_ERROR


async def test_generate_text_and_list_models():
    service = make_service()
    setting = ProviderSetting(kind="openai", api_key="k")
    assert await service.generate_text([ChatHistoryItem("user", "hi")], setting, PARAMS) == "done"
    assert await service.list_models(setting) == [Model("m1")]


def test_cancel_unknown_task_is_silent():
    service = make_service()
    service.cancel_streaming("nope")
    service.cancel_all()
