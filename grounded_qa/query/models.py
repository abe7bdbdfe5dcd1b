"""Question answering request/response models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from grounded_qa.config import ReasoningEffort, SonarModel


class QuestionContext(str, Enum):
    """Topic tag used to pick the prompt's focus sentence."""

    CHARACTER = "character"
    PLOT = "plot"
    THEME = "theme"
    GENERAL = "general"


class CitationType(str, Enum):
    """Where a citation came from."""

    WEB_CITATION = "web_citation"
    DEFAULT = "default"


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


class Citation(BaseModel):
    """A numbered source reference."""

    model_config = ConfigDict(frozen=True)

    number: str
    title: str
    url: str
    type: CitationType = CitationType.WEB_CITATION
    domain: str


class GroundingMetadata(BaseModel):
    """Search grounding information reported alongside an answer."""

    model_config = ConfigDict(frozen=True)

    search_queries: list[str] = Field(default_factory=list)
    web_sources: list[Citation] = Field(default_factory=list)
    grounding_successful: bool = False
    confidence_score: float = 0.0
    raw_metadata: dict[str, Any] | None = None


class QueryRequest(BaseModel):
    """A question about the novel, plus generation options.

    Unset generation options fall back to the client configuration.
    """

    model_config = ConfigDict(frozen=True)

    question: str
    selected_text: str | None = None
    chapter_context: str | None = None
    current_chapter: str | None = None
    question_context: QuestionContext | str | None = None
    model: SonarModel | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    reasoning_effort: ReasoningEffort | None = None
    enable_streaming: bool = False
    show_thinking_process: bool | None = None


class QueryResponse(BaseModel):
    """Complete result of a single-shot or streamed request."""

    model_config = ConfigDict(frozen=True)

    question: str
    answer: str
    raw_answer: str = ""
    citations: list[Citation] = Field(default_factory=list)
    grounding_metadata: GroundingMetadata = Field(default_factory=GroundingMetadata)
    model_used: str
    model_key: str
    reasoning_effort: str | None = None
    question_context: str | None = None
    processing_time: float
    success: bool
    streaming: bool = False
    stopped_by_user: bool = False
    chunk_count: int | None = None
    timestamp: str = Field(default_factory=utc_timestamp)
    answer_length: int = 0
    question_length: int = 0
    citation_count: int = 0
    error: str | None = None
    error_code: str | None = None
    retryable: bool | None = None
    metadata: dict[str, Any] | None = None


class StreamingChunk(BaseModel):
    """One incremental update of a streamed answer."""

    model_config = ConfigDict(frozen=True)

    content: str
    full_content: str
    timestamp: str = Field(default_factory=utc_timestamp)
    citations: list[Citation] = Field(default_factory=list)
    search_queries: list[str] = Field(default_factory=list)
    metadata: GroundingMetadata = Field(default_factory=GroundingMetadata)
    response_time: float
    is_complete: bool
    chunk_index: int
    error: str | None = None
    error_code: str | None = None
    retryable: bool | None = None
    has_thinking_process: bool = False


class BatchMetadata(BaseModel):
    """Counts and timings for a batch of questions."""

    model_config = ConfigDict(frozen=True)

    total_questions: int
    successful_questions: int
    failed_questions: int
    total_processing_time: float
    average_processing_time: float
    timestamp: str = Field(default_factory=utc_timestamp)


class BatchQueryResponse(BaseModel):
    """Answers to a batch of questions, in the order they were asked."""

    model_config = ConfigDict(frozen=True)

    responses: list[QueryResponse]
    batch_metadata: BatchMetadata
    success: bool
    errors: list[str] | None = None
