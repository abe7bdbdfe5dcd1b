"""Question models and answer post-processing."""

from .citations import extract_citations, format_references
from .cleaner import clean_response
from .models import (
    BatchMetadata,
    BatchQueryResponse,
    Citation,
    CitationType,
    GroundingMetadata,
    QueryRequest,
    QueryResponse,
    QuestionContext,
    StreamingChunk,
)
from .prompts import build_prompt
from .validation import validate_query_request

__all__ = [
    "BatchMetadata",
    "BatchQueryResponse",
    "Citation",
    "CitationType",
    "GroundingMetadata",
    "QueryRequest",
    "QueryResponse",
    "QuestionContext",
    "StreamingChunk",
    "build_prompt",
    "clean_response",
    "extract_citations",
    "format_references",
    "validate_query_request",
]
