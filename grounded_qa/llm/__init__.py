"""Completion providers module."""

from grounded_qa.llm.base import CompletionProvider
from grounded_qa.llm.errors import (
    ErrorGuidance,
    ErrorKind,
    QAError,
    backoff_delay,
    classify_error,
    format_error_for_user,
    should_retry,
)
from grounded_qa.llm.factory import create_completion_client, get_default_client, reset_default_client
from grounded_qa.llm.perplexity import PerplexityClient, PerplexityConfig
from grounded_qa.llm.streaming import FrameDecoder, iter_frames

__all__ = [
    "CompletionProvider",
    "ErrorGuidance",
    "ErrorKind",
    "FrameDecoder",
    "PerplexityClient",
    "PerplexityConfig",
    "QAError",
    "backoff_delay",
    "classify_error",
    "create_completion_client",
    "format_error_for_user",
    "get_default_client",
    "iter_frames",
    "reset_default_client",
    "should_retry",
]
