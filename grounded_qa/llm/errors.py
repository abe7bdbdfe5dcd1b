"""Error types and failure classification for the completion client."""

import json
from enum import Enum

import httpx
from pydantic import BaseModel

RATE_LIMIT_STATUS = 429


class ErrorKind(str, Enum):
    """Short codes for classified failures."""

    MISSING_CONFIG = "MISSING_CONFIG"
    API_ERROR = "API_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class QAError(Exception):
    """A classified completion failure.

    Attributes:
        message: Human-readable description
        code: Short kind code
        status_code: Upstream HTTP status, if any
        retryable: Whether an outer caller may safely try again
        original: The exception this was classified from
    """

    def __init__(
        self,
        message: str,
        code: ErrorKind,
        status_code: int | None = None,
        retryable: bool = False,
        original: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retryable = retryable
        self.original = original

    def __repr__(self) -> str:
        return (
            f"QAError(code={self.code.value!r}, status_code={self.status_code!r}, "
            f"retryable={self.retryable!r}, message={self.message!r})"
        )


def _is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == RATE_LIMIT_STATUS


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from an upstream error response."""
    try:
        body = response.json()
    except (ValueError, httpx.ResponseNotRead):
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error

    try:
        text = response.text.strip()
    except httpx.ResponseNotRead:
        text = ""

    return text or response.reason_phrase or f"HTTP {response.status_code}"


def classify_error(exc: BaseException) -> QAError:
    """Map any failure onto a QAError with a retryability flag.

    Args:
        exc: Exception raised while talking to the service

    Returns:
        Classified error; ``exc`` itself when it already is one
    """
    if isinstance(exc, QAError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return QAError(
            f"Perplexity API Error: {_error_detail(exc.response)}",
            ErrorKind.API_ERROR,
            status_code=status_code,
            retryable=_is_retryable_status(status_code),
            original=exc,
        )

    if isinstance(exc, httpx.TimeoutException):
        return QAError(
            f"Request timed out: {exc}",
            ErrorKind.TIMEOUT,
            retryable=True,
            original=exc,
        )

    if isinstance(exc, (httpx.RequestError, httpx.StreamError)):
        return QAError(
            f"Network error: {exc}",
            ErrorKind.NETWORK_ERROR,
            retryable=True,
            original=exc,
        )

    if isinstance(exc, json.JSONDecodeError):
        return QAError(
            f"Invalid response from Perplexity API: {exc}",
            ErrorKind.INVALID_RESPONSE,
            status_code=500,
            retryable=True,
            original=exc,
        )

    return QAError(
        str(exc) or type(exc).__name__,
        ErrorKind.UNKNOWN_ERROR,
        retryable=True,
        original=exc,
    )


def should_retry(error: QAError, attempt: int, max_attempts: int = 3) -> bool:
    """Whether an outer caller should make another attempt.

    Args:
        error: Classified failure of the latest attempt
        attempt: Number of attempts made so far
        max_attempts: Attempt budget
    """
    if not error.retryable:
        return False
    return attempt < max_attempts


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 30.0) -> float:
    """Exponential backoff delay in seconds for the given attempt number."""
    return min(base * (2**attempt), cap)


class RecoveryAction(str, Enum):
    """Suggested next steps for the person who asked the question."""

    RETRY_SAME_MODEL = "RETRY_SAME_MODEL"
    RETRY_FALLBACK_MODEL = "RETRY_FALLBACK_MODEL"
    SHORTEN_QUESTION = "SHORTEN_QUESTION"
    SIMPLIFY_QUESTION = "SIMPLIFY_QUESTION"
    WAIT_AND_RETRY = "WAIT_AND_RETRY"
    CHECK_NETWORK = "CHECK_NETWORK"
    CHECK_API_KEY = "CHECK_API_KEY"
    CONTACT_SUPPORT = "CONTACT_SUPPORT"


RECOVERY_SUGGESTIONS: dict[RecoveryAction, str] = {
    RecoveryAction.RETRY_SAME_MODEL: "• 點擊重試按鈕再次嘗試",
    RecoveryAction.RETRY_FALLBACK_MODEL: "• 嘗試使用較快的模型（Sonar Pro）",
    RecoveryAction.SHORTEN_QUESTION: "• 縮短問題長度並重試",
    RecoveryAction.SIMPLIFY_QUESTION: "• 簡化您的問題，一次只問一個重點",
    RecoveryAction.WAIT_AND_RETRY: "• 等待片刻後再試（建議等待 1-2 分鐘）",
    RecoveryAction.CHECK_NETWORK: "• 檢查網絡連接是否正常",
    RecoveryAction.CHECK_API_KEY: "• 聯繫管理員檢查 API 配置",
    RecoveryAction.CONTACT_SUPPORT: "• 如問題持續，請聯繫技術支持",
}

FALLBACK_MODEL = "sonar-pro"

AUTH_FAILURE_STATUSES = (401, 403)


class ErrorGuidance(BaseModel):
    """User-facing description of a failure."""

    title: str
    message: str
    suggestions: list[str]
    fallback_model: str | None = None


def _guidance_parts(error: QAError) -> tuple[str, str, list[RecoveryAction], str | None]:
    if error.code == ErrorKind.MISSING_CONFIG or error.status_code in AUTH_FAILURE_STATUSES:
        return (
            "認證失敗",
            "API 認證失敗，請檢查系統配置或聯繫管理員。",
            [RecoveryAction.CHECK_API_KEY, RecoveryAction.CONTACT_SUPPORT],
            None,
        )

    if error.code == ErrorKind.TIMEOUT:
        return (
            "處理超時",
            "處理您的問題時發生超時。這可能是因為問題較為複雜，需要更多時間分析。",
            [
                RecoveryAction.SHORTEN_QUESTION,
                RecoveryAction.RETRY_FALLBACK_MODEL,
                RecoveryAction.SIMPLIFY_QUESTION,
            ],
            FALLBACK_MODEL,
        )

    if error.status_code == RATE_LIMIT_STATUS:
        return (
            "請求限制",
            "API 請求次數已達上限，請稍候再試。通常需要等待 1-2 分鐘。",
            [RecoveryAction.WAIT_AND_RETRY],
            None,
        )

    if error.code == ErrorKind.NETWORK_ERROR:
        return (
            "網絡錯誤",
            "網絡連接失敗，請檢查您的網絡連接後重試。",
            [RecoveryAction.CHECK_NETWORK, RecoveryAction.RETRY_SAME_MODEL],
            None,
        )

    if error.code == ErrorKind.API_ERROR:
        return (
            "API 錯誤",
            "API 服務暫時無法使用，請稍後重試。",
            [RecoveryAction.RETRY_FALLBACK_MODEL, RecoveryAction.WAIT_AND_RETRY],
            FALLBACK_MODEL,
        )

    if error.code == ErrorKind.INVALID_RESPONSE:
        return (
            "處理錯誤",
            "服務回應格式異常，請稍後重試。",
            [RecoveryAction.RETRY_SAME_MODEL, RecoveryAction.CONTACT_SUPPORT],
            None,
        )

    return (
        "處理錯誤",
        "發生未知錯誤，請稍後重試。如果問題持續，請聯繫技術支持。",
        [RecoveryAction.RETRY_SAME_MODEL, RecoveryAction.CONTACT_SUPPORT],
        None,
    )


def format_error_for_user(error: QAError) -> ErrorGuidance:
    """Turn a classified failure into a title, message and suggestions.

    Args:
        error: Classified failure

    Returns:
        ErrorGuidance; ``fallback_model`` names a faster model worth trying
    """
    title, message, actions, fallback_model = _guidance_parts(error)

    return ErrorGuidance(
        title=title,
        message=message,
        suggestions=[RECOVERY_SUGGESTIONS[action] for action in actions],
        fallback_model=fallback_model,
    )
