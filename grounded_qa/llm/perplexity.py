"""Perplexity Sonar completion client."""

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx
from pydantic import BaseModel

from grounded_qa.config import ReasoningEffort, SonarModel
from grounded_qa.llm.base import CompletionProvider
from grounded_qa.llm.errors import ErrorKind, QAError, classify_error
from grounded_qa.llm.streaming import FrameDecoder, iter_frames
from grounded_qa.query.citations import DEFAULT_MAX_CITATIONS, extract_citations
from grounded_qa.query.cleaner import clean_response, has_thinking_process
from grounded_qa.query.models import (
    BatchMetadata,
    BatchQueryResponse,
    Citation,
    CitationType,
    GroundingMetadata,
    QueryRequest,
    QueryResponse,
    StreamingChunk,
)
from grounded_qa.query.prompts import build_request_payload

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_ENDPOINT = "/chat/completions"
USER_AGENT = "RedMansion-Learning-Platform/1.0"

# Number of sources at which grounding confidence saturates.
CONFIDENCE_SOURCE_COUNT = 5

DEFAULT_BATCH_CONCURRENCY = 3


class PerplexityConfig(BaseModel):
    """Configuration for the Perplexity client."""

    api_key: str | None = None
    base_url: str = "https://api.perplexity.ai"
    model: SonarModel = SonarModel.SONAR_REASONING_PRO
    reasoning_effort: ReasoningEffort | None = ReasoningEffort.HIGH
    temperature: float = 0.2
    max_tokens: int = 2000
    timeout: float = 60.0
    stream_chunk_delay: float = 0.05
    max_citations: int = DEFAULT_MAX_CITATIONS
    show_thinking_process: bool = True
    debug: bool = False


def _value(option: Any) -> str | None:
    if option is None:
        return None
    return str(getattr(option, "value", option))


def grounding_metadata(
    citations: list[Citation],
    sources: list[str] | None,
    search_queries: list[str] | None,
    raw_metadata: dict[str, Any] | None = None,
) -> GroundingMetadata:
    """Summarise how well an answer is grounded in web sources."""
    source_count = len(sources or [])
    return GroundingMetadata(
        search_queries=list(search_queries or []),
        web_sources=[c for c in citations if c.type == CitationType.WEB_CITATION],
        grounding_successful=source_count > 0,
        confidence_score=min(source_count / CONFIDENCE_SOURCE_COUNT, 1.0),
        raw_metadata=raw_metadata,
    )


class PerplexityClient(CompletionProvider):
    """Grounded question answering over the Perplexity chat completions API."""

    def __init__(
        self,
        config: PerplexityConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize Perplexity client.

        Args:
            config: Perplexity configuration
            transport: Optional httpx transport, mainly for tests
            **kwargs: Additional configuration options

        Raises:
            QAError: ``MISSING_CONFIG`` when no API key is available
        """
        self.config = config or PerplexityConfig(**kwargs)

        if not (self.config.api_key and self.config.api_key.strip()):
            raise QAError(
                "Perplexity API key is required. Please set PERPLEXITY_API_KEY.",
                ErrorKind.MISSING_CONFIG,
                status_code=401,
                retryable=False,
            )

        self.client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.config.api_key}",
                "User-Agent": USER_AGENT,
            },
            transport=transport,
        )

    def _model_key(self, request: QueryRequest) -> str:
        return _value(request.model or self.config.model)

    def _show_thinking(self, request: QueryRequest) -> bool:
        if request.show_thinking_process is None:
            return self.config.show_thinking_process
        return request.show_thinking_process

    def _build_payload(self, request: QueryRequest, stream: bool) -> dict[str, Any]:
        payload = build_request_payload(
            request,
            model=self._model_key(request),
            temperature=(
                request.temperature if request.temperature is not None else self.config.temperature
            ),
            max_tokens=request.max_tokens if request.max_tokens is not None else self.config.max_tokens,
            reasoning_effort=_value(request.reasoning_effort or self.config.reasoning_effort),
            stream=stream,
        )

        logger.info(
            f"Sending Perplexity request: model={payload['model']}, stream={stream}, "
            f"prompt length={len(payload['messages'][0]['content'])}"
        )
        if self.config.debug:
            logger.info(f"Perplexity API request payload: {json.dumps(payload, ensure_ascii=False)}")

        return payload

    @staticmethod
    def _first_choice(data: Any) -> dict[str, Any]:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return {}
        return choices[0]

    @staticmethod
    def _text_field(container: Any, key: str) -> str:
        value = container.get(key) if isinstance(container, dict) else None
        return value if isinstance(value, str) else ""

    @staticmethod
    def _string_list(data: dict[str, Any], key: str) -> list[str]:
        value = data.get(key)
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    @staticmethod
    def _empty_stream_error() -> QAError:
        return QAError(
            "Perplexity stream ended without answer text",
            ErrorKind.INVALID_RESPONSE,
            status_code=500,
            retryable=True,
        )

    async def complete(self, request: QueryRequest) -> QueryResponse:
        """Answer a question with a single non-streaming request.

        Args:
            request: Question and generation options

        Returns:
            QueryResponse; failures are reported with ``success=False``
        """
        start_time = time.time()
        model_key = self._model_key(request)

        try:
            payload = self._build_payload(request, stream=False)
            response = await self.client.post(CHAT_COMPLETIONS_ENDPOINT, json=payload)
            response.raise_for_status()
            data = response.json()

            choice = self._first_choice(data)
            raw_answer = self._text_field(choice.get("message"), "content")
            if not raw_answer.strip():
                raise QAError(
                    "Invalid response from Perplexity API",
                    ErrorKind.INVALID_RESPONSE,
                    status_code=500,
                    retryable=True,
                )

            sources = self._string_list(data, "citations")
            search_queries = self._string_list(data, "web_search_queries")
            usage = data.get("usage")
            finish_reason = choice.get("finish_reason") or data.get("finish_reason")

            answer = clean_response(raw_answer, self._show_thinking(request))
            citations = extract_citations(
                answer, sources, search_queries, max_citations=self.config.max_citations
            )
            raw_metadata = {"usage": usage, "finish_reason": finish_reason}
            processing_time = time.time() - start_time

            logger.info(
                f"Perplexity request completed in {processing_time:.2f}s "
                f"with {len(sources)} sources"
            )

            return QueryResponse(
                question=request.question,
                answer=answer,
                raw_answer=raw_answer,
                citations=citations,
                grounding_metadata=grounding_metadata(
                    citations, sources, search_queries, raw_metadata
                ),
                model_used=data.get("model") or model_key,
                model_key=model_key,
                reasoning_effort=_value(request.reasoning_effort),
                question_context=_value(request.question_context),
                processing_time=processing_time,
                success=True,
                answer_length=len(answer),
                question_length=len(request.question),
                citation_count=len(citations),
                metadata=raw_metadata,
            )

        except Exception as e:
            error = classify_error(e)
            logger.error(
                f"Perplexity request failed: code={error.code.value}, "
                f"status={error.status_code}, retryable={error.retryable}: {error.message}"
            )
            return self._failure_response(request, model_key, error, time.time() - start_time)

    def _failure_response(
        self,
        request: QueryRequest,
        model_key: str,
        error: QAError,
        processing_time: float,
        streaming: bool = False,
    ) -> QueryResponse:
        return QueryResponse(
            question=request.question,
            answer=f"抱歉，處理問題時發生錯誤：{error.message}",
            raw_answer="",
            citations=[],
            grounding_metadata=GroundingMetadata(),
            model_used=model_key,
            model_key=model_key,
            reasoning_effort=_value(request.reasoning_effort),
            question_context=_value(request.question_context),
            processing_time=processing_time,
            success=False,
            streaming=streaming,
            question_length=len(request.question),
            error=error.message,
            error_code=error.code.value,
            retryable=error.retryable,
        )

    async def stream(self, request: QueryRequest) -> AsyncIterator[StreamingChunk]:
        """Answer a question incrementally.

        Each chunk carries the delta plus the cleaned cumulative answer and
        citations recomputed over it. The final chunk has ``is_complete``
        set; on failure it also carries ``error``. Closing the iterator early
        releases the HTTP response.

        Args:
            request: Question and generation options

        Yields:
            StreamingChunk instances with increasing ``chunk_index``
        """
        start_time = time.time()
        chunk_index = 0
        full_content = ""
        sources: list[str] = []
        search_queries: list[str] = []
        decoder = FrameDecoder()
        show_thinking = self._show_thinking(request)

        def make_chunk(
            content: str, is_complete: bool, raw_metadata: dict[str, Any] | None = None
        ) -> StreamingChunk:
            citations = extract_citations(
                full_content, sources, search_queries, max_citations=self.config.max_citations
            )
            return StreamingChunk(
                content=content,
                full_content=clean_response(full_content, show_thinking),
                citations=citations,
                search_queries=list(search_queries),
                metadata=grounding_metadata(citations, sources, search_queries, raw_metadata),
                response_time=time.time() - start_time,
                is_complete=is_complete,
                chunk_index=chunk_index,
                has_thinking_process=has_thinking_process(full_content),
            )

        try:
            payload = self._build_payload(request, stream=True)
            completed = False

            async with self.client.stream(
                "POST", CHAT_COMPLETIONS_ENDPOINT, json=payload
            ) as response:
                if not response.is_success:
                    await response.aread()
                    response.raise_for_status()

                async with aclosing(iter_frames(response.aiter_text(), decoder)) as frames:
                    async for frame in frames:
                        if self._string_list(frame, "citations"):
                            sources = self._string_list(frame, "citations")
                        if self._string_list(frame, "web_search_queries"):
                            search_queries = self._string_list(frame, "web_search_queries")

                        choice = self._first_choice(frame)
                        content = self._text_field(choice.get("delta"), "content")
                        finish_reason = choice.get("finish_reason") or frame.get("finish_reason")
                        is_complete = finish_reason is not None

                        if not content and not is_complete:
                            continue

                        full_content += content
                        if is_complete and not full_content.strip():
                            raise self._empty_stream_error()
                        chunk_index += 1

                        if is_complete:
                            completed = True
                            yield make_chunk(
                                content,
                                True,
                                {
                                    "finish_reason": finish_reason,
                                    "usage": frame.get("usage"),
                                    "skipped_frames": decoder.skipped_frames,
                                },
                            )
                            break

                        yield make_chunk(content, False)

                        if self.config.stream_chunk_delay > 0:
                            await asyncio.sleep(self.config.stream_chunk_delay)

            if not completed:
                if not full_content.strip():
                    raise self._empty_stream_error()
                chunk_index += 1
                yield make_chunk("", True, {"skipped_frames": decoder.skipped_frames})

            logger.info(
                f"Perplexity stream finished in {time.time() - start_time:.2f}s "
                f"after {chunk_index} chunks"
            )

        except Exception as e:
            error = classify_error(e)
            logger.error(
                f"Perplexity stream failed: code={error.code.value}, "
                f"status={error.status_code}, retryable={error.retryable}: {error.message}"
            )
            yield StreamingChunk(
                content="",
                full_content=f"錯誤：{error.message}",
                citations=[],
                search_queries=[],
                metadata=GroundingMetadata(),
                response_time=time.time() - start_time,
                is_complete=True,
                chunk_index=chunk_index + 1,
                error=error.message,
                error_code=error.code.value,
                retryable=error.retryable,
            )

    async def collect(self, request: QueryRequest) -> QueryResponse:
        """Consume a full stream and summarise it as one QueryResponse."""
        start_time = time.time()
        model_key = self._model_key(request)
        raw_answer = ""
        last_chunk: StreamingChunk | None = None
        chunk_count = 0

        async with aclosing(self.stream(request)) as chunks:
            async for chunk in chunks:
                raw_answer += chunk.content
                last_chunk = chunk
                chunk_count += 1

        processing_time = time.time() - start_time

        if last_chunk is None or last_chunk.error is not None:
            if last_chunk is None:
                error = QAError("Stream ended without output", ErrorKind.UNKNOWN_ERROR, retryable=True)
            else:
                error = QAError(
                    last_chunk.error,
                    ErrorKind(last_chunk.error_code or ErrorKind.UNKNOWN_ERROR),
                    retryable=bool(last_chunk.retryable),
                )
            return self._failure_response(
                request, model_key, error, processing_time, streaming=True
            )

        return QueryResponse(
            question=request.question,
            answer=last_chunk.full_content,
            raw_answer=raw_answer,
            citations=last_chunk.citations,
            grounding_metadata=last_chunk.metadata,
            model_used=model_key,
            model_key=model_key,
            reasoning_effort=_value(request.reasoning_effort),
            question_context=_value(request.question_context),
            processing_time=processing_time,
            success=True,
            streaming=True,
            chunk_count=chunk_count,
            answer_length=len(last_chunk.full_content),
            question_length=len(request.question),
            citation_count=len(last_chunk.citations),
            metadata=last_chunk.metadata.raw_metadata,
        )

    async def batch(
        self,
        questions: list[QueryRequest],
        shared_config: dict[str, Any] | None = None,
        max_concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> BatchQueryResponse:
        """Answer several questions with bounded concurrency.

        Fields in ``shared_config`` apply to every question unless the
        question sets them itself.

        Args:
            questions: Requests to answer
            shared_config: QueryRequest fields shared by all questions
            max_concurrency: Maximum requests in flight at once

        Returns:
            BatchQueryResponse with responses in question order
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        start_time = time.time()
        semaphore = asyncio.Semaphore(max_concurrency)
        shared = dict(shared_config or {})

        logger.info(
            f"Starting Perplexity batch: {len(questions)} questions, "
            f"max concurrency {max_concurrency}"
        )

        async def answer(question: QueryRequest) -> QueryResponse:
            async with semaphore:
                try:
                    merged = QueryRequest(**{**shared, **question.model_dump(exclude_unset=True)})
                except Exception as e:
                    error = classify_error(e)
                    logger.error(f"Invalid batch question: {error.message}")
                    return self._failure_response(question, self._model_key(question), error, 0.0)
                return await self.complete(merged)

        responses = list(await asyncio.gather(*(answer(q) for q in questions)))

        errors = [
            f"Question {index}: {response.error or 'Unknown error'}"
            for index, response in enumerate(responses, 1)
            if not response.success
        ]
        successful = len(responses) - len(errors)
        total_time = time.time() - start_time

        logger.info(
            f"Perplexity batch completed in {total_time:.2f}s: "
            f"{successful} succeeded, {len(errors)} failed"
        )

        return BatchQueryResponse(
            responses=responses,
            batch_metadata=BatchMetadata(
                total_questions=len(questions),
                successful_questions=successful,
                failed_questions=len(errors),
                total_processing_time=total_time,
                average_processing_time=total_time / len(questions) if questions else 0.0,
            ),
            success=successful > 0,
            errors=errors or None,
        )

    async def test_connection(self) -> dict[str, Any]:
        """Issue a minimal real request to verify configuration.

        Returns:
            ``{"success": True}`` or ``{"success": False, "error": ...}``
        """
        result = await self.complete(
            QueryRequest(question="測試連線", model=SonarModel.SONAR_PRO, max_tokens=50)
        )

        if not result.success:
            return {"success": False, "error": result.error or "Connection test failed"}

        return {"success": True}

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
