"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在调用层或 UI 层做统一捕获与用户提示。

LLM 调用相关的错误统一用 LlmError 表示：它不是一组子类，
而是一个带 kind 标签的异常，kind 决定向用户展示的提示文案。
传输层异常（httpx）在适配器边界被重新分类为 LlmError，
上层永远看不到原始 I/O 异常类型。
"""

from enum import Enum
from typing import Optional

import httpx


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 task_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class LlmErrorKind(str, Enum):
    NETWORK_TIMEOUT = "network_timeout"
    NETWORK_CONNECTION = "network_connection"
    HTTP_STATUS = "http_status"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    REQUEST_ERROR = "request_error"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


_DEFAULT_MESSAGES = {
    LlmErrorKind.NETWORK_TIMEOUT: "请求超时",
    LlmErrorKind.NETWORK_CONNECTION: "网络连接失败",
    LlmErrorKind.HTTP_STATUS: "HTTP 错误",
    LlmErrorKind.AUTHENTICATION: "认证失败",
    LlmErrorKind.RATE_LIMIT: "触发频率限制",
    LlmErrorKind.SERVER_ERROR: "服务器内部错误",
    LlmErrorKind.REQUEST_ERROR: "请求参数无效",
    LlmErrorKind.CANCELLED: "请求已取消",
    LlmErrorKind.UNKNOWN: "未知错误",
}

_REQUEST_ERROR_STATUSES = {400, 404, 405, 409, 413, 415, 422}


class LlmError(BusinessError):
    """LLM 调用错误。

    Attributes:
        kind: 错误类别，见 LlmErrorKind。
        status_code: HTTP 状态码（仅 HTTP 相关错误）。
        body: 响应体文本（仅 HTTP 相关错误）。
    """

    def __init__(
        self,
        kind: LlmErrorKind,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        **extra,
    ):
        self.kind = kind
        self.status_code = status_code
        self.body = body
        super().__init__(
            code=kind.value.upper(),
            message=message or _DEFAULT_MESSAGES[kind],
            http_status=status_code or 400,
            **extra,
        )

    @classmethod
    def from_status(cls, status_code: int, body: str = "", **extra) -> "LlmError":
        """根据非 2xx 状态码分类。"""

        if status_code in (401, 403):
            kind = LlmErrorKind.AUTHENTICATION
        elif status_code == 429:
            kind = LlmErrorKind.RATE_LIMIT
        elif status_code >= 500:
            kind = LlmErrorKind.SERVER_ERROR
        elif status_code in _REQUEST_ERROR_STATUSES:
            kind = LlmErrorKind.REQUEST_ERROR
        else:
            kind = LlmErrorKind.HTTP_STATUS
        message = f"HTTP {status_code}: {body}" if body else f"HTTP {status_code}"
        return cls(kind, message, status_code=status_code, body=body, **extra)

    @classmethod
    def from_transport(cls, exc: BaseException, **extra) -> "LlmError":
        """把 httpx 传输层异常映射到错误分类。"""

        if isinstance(exc, LlmError):
            return exc
        if isinstance(exc, httpx.ConnectTimeout):
            kind = LlmErrorKind.NETWORK_TIMEOUT
        elif isinstance(exc, httpx.ConnectError):
            kind = LlmErrorKind.NETWORK_CONNECTION
        elif isinstance(exc, httpx.TimeoutException):
            kind = LlmErrorKind.NETWORK_TIMEOUT
        elif isinstance(exc, (httpx.NetworkError, httpx.ProxyError)):
            kind = LlmErrorKind.NETWORK_CONNECTION
        else:
            kind = LlmErrorKind.UNKNOWN
        err = cls(kind, str(exc) or _DEFAULT_MESSAGES[kind], **extra)
        err.__cause__ = exc
        return err

    @classmethod
    def request(cls, message: str, **extra) -> "LlmError":
        return cls(LlmErrorKind.REQUEST_ERROR, message, **extra)


class StoreError(BusinessError):
    """持久化层读写失败。"""
