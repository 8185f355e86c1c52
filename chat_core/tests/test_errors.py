import asyncio

import httpx
import pytest

from chat_core.conversation.errors import format_error_message, is_cancellation_related
from chat_core.domain.exceptions import BusinessError, LlmError, LlmErrorKind


@pytest.mark.parametrize(
    "status, kind",
    [
        (401, LlmErrorKind.AUTHENTICATION),
        (403, LlmErrorKind.AUTHENTICATION),
        (429, LlmErrorKind.RATE_LIMIT),
        (500, LlmErrorKind.SERVER_ERROR),
        (503, LlmErrorKind.SERVER_ERROR),
        (400, LlmErrorKind.REQUEST_ERROR),
        (422, LlmErrorKind.REQUEST_ERROR),
        (418, LlmErrorKind.HTTP_STATUS),
    ],
)
def test_from_status(status, kind):
    err = LlmError.from_status(status, "body")
    assert err.kind == kind
    assert err.status_code == status
    assert err.body == "body"
    assert isinstance(err, BusinessError)


def test_from_transport():
    assert LlmError.from_transport(httpx.ReadTimeout("slow")).kind == LlmErrorKind.NETWORK_TIMEOUT
    assert LlmError.from_transport(httpx.ConnectTimeout("slow")).kind == LlmErrorKind.NETWORK_TIMEOUT
    err = LlmError.from_transport(httpx.ConnectError("dns"))
    assert err.kind == LlmErrorKind.NETWORK_CONNECTION
    assert isinstance(err.__cause__, httpx.ConnectError)
    assert LlmError.from_transport(httpx.DecodingError("bad")).kind == LlmErrorKind.UNKNOWN


def test_format_error_message_per_kind():
    assert "API密钥" in format_error_message(LlmError(LlmErrorKind.AUTHENTICATION))
    assert "稍后再试" in format_error_message(LlmError(LlmErrorKind.RATE_LIMIT))
    assert "网络超时" in format_error_message(LlmError(LlmErrorKind.NETWORK_TIMEOUT))
    assert "HTTP 418" in format_error_message(LlmError.from_status(418))
    assert "bad field" in format_error_message(LlmError.request("bad field"))
    for kind in LlmErrorKind:
        if kind != LlmErrorKind.CANCELLED:
            assert format_error_message(LlmError(kind))


def test_format_error_message_for_other_exceptions():
    assert format_error_message(RuntimeError("connection reset")) == "网络错误，请检查网络连接后重试"
    assert "系统错误" in format_error_message(ValueError("boom"))


def test_is_cancellation_related_walks_chain():
    assert is_cancellation_related(asyncio.CancelledError())
    assert is_cancellation_related(LlmError(LlmErrorKind.CANCELLED))
    wrapped = RuntimeError("outer")
    wrapped.__cause__ = asyncio.CancelledError()
    assert is_cancellation_related(wrapped)
    assert not is_cancellation_related(LlmError(LlmErrorKind.SERVER_ERROR))
