"""Tests for the Perplexity completion client."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from grounded_qa.config import SonarModel
from grounded_qa.llm.errors import ErrorKind, QAError
from grounded_qa.llm.perplexity import PerplexityClient, PerplexityConfig
from grounded_qa.query.models import CitationType, QueryRequest, QueryResponse

SOURCES = [
    "https://zh.wikipedia.org/wiki/紅樓夢",
    "https://www.zhihu.com/question/1",
    "https://baike.baidu.com/item/林黛玉",
]


def completion_body(content="林黛玉是賈母的外孫女[1]。", **extra):
    body = {
        "id": "cmpl-1",
        "model": "sonar-reasoning-pro",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
        "citations": SOURCES,
        "web_search_queries": ["林黛玉 身世"],
    }
    body.update(extra)
    return body


def make_client(handler, **overrides) -> PerplexityClient:
    values = {"api_key": "pplx-test-key", "stream_chunk_delay": 0.0}
    values.update(overrides)
    return PerplexityClient(PerplexityConfig(**values), transport=httpx.MockTransport(handler))


class TestClientConstruction:
    """Test client construction."""

    def test_missing_api_key(self):
        """Test that construction without a key is a fatal config error."""
        with pytest.raises(QAError) as exc_info:
            PerplexityClient(PerplexityConfig())

        assert exc_info.value.code == ErrorKind.MISSING_CONFIG
        assert exc_info.value.retryable is False

    def test_kwargs_config(self):
        """Test configuration through keyword arguments."""
        client = PerplexityClient(api_key="pplx-test-key", max_citations=3)

        assert client.config.api_key == "pplx-test-key"
        assert client.config.max_citations == 3
        assert client.client.headers["Authorization"] == "Bearer pplx-test-key"


class TestComplete:
    """Test single-shot completion."""

    @pytest.mark.asyncio
    async def test_complete_success(self):
        """Test a successful grounded answer."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion_body())

        client = make_client(handler)
        result = await client.complete(QueryRequest(question="林黛玉是誰？"))

        assert isinstance(result, QueryResponse)
        assert result.success is True
        assert result.streaming is False
        assert result.stopped_by_user is False
        assert result.answer == "林黛玉是賈母的外孫女[1]。"
        assert result.raw_answer == "林黛玉是賈母的外孫女[1]。"
        assert result.model_used == "sonar-reasoning-pro"
        assert [c.number for c in result.citations] == ["1", "2", "3"]
        assert result.citations[0].title == "維基百科 (中文)"
        assert result.citation_count == 3
        assert result.grounding_metadata.grounding_successful is True
        assert result.grounding_metadata.confidence_score == pytest.approx(0.6)
        assert result.grounding_metadata.search_queries == ["林黛玉 身世"]
        assert len(result.grounding_metadata.web_sources) == 3
        assert result.metadata["finish_reason"] == "stop"

        assert seen["url"] == "https://api.perplexity.ai/chat/completions"
        assert seen["body"]["stream"] is False
        assert seen["body"]["model"] == "sonar-reasoning-pro"
        assert seen["body"]["reasoning_effort"] == "high"
        assert len(seen["body"]["messages"]) == 1
        assert seen["body"]["messages"][0]["role"] == "user"
        assert "問題：林黛玉是誰？" in seen["body"]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_complete_hides_thinking(self):
        """Test that the reasoning trace is dropped when hidden."""
        body = completion_body(content="<think>先查身世</think>林黛玉是絳珠仙草轉世。")
        client = make_client(lambda request: httpx.Response(200, json=body))

        result = await client.complete(
            QueryRequest(question="林黛玉是誰？", show_thinking_process=False)
        )

        assert result.answer == "林黛玉是絳珠仙草轉世。"
        assert "<think>" in result.raw_answer

    @pytest.mark.asyncio
    async def test_complete_without_sources_uses_defaults(self):
        """Test the fallback citations when the service returns none."""
        body = completion_body(citations=[], web_search_queries=[])
        client = make_client(lambda request: httpx.Response(200, json=body))

        result = await client.complete(QueryRequest(question="林黛玉是誰？"))

        assert result.success is True
        assert all(c.type == CitationType.DEFAULT for c in result.citations)
        assert result.grounding_metadata.grounding_successful is False
        assert result.grounding_metadata.confidence_score == 0.0
        assert result.grounding_metadata.web_sources == []

    @pytest.mark.asyncio
    async def test_complete_server_error(self):
        """Test that a 5xx response becomes a retryable failure envelope."""
        client = make_client(
            lambda request: httpx.Response(500, json={"error": {"message": "upstream down"}})
        )

        result = await client.complete(QueryRequest(question="林黛玉是誰？"))

        assert result.success is False
        assert result.error_code == "API_ERROR"
        assert result.retryable is True
        assert "upstream down" in result.error
        assert result.answer.startswith("抱歉，處理問題時發生錯誤：")
        assert "upstream down" in result.answer
        assert result.citations == []
        assert result.grounding_metadata.grounding_successful is False

    @pytest.mark.asyncio
    async def test_complete_unauthorized(self):
        """Test that a 401 response is not retryable."""
        client = make_client(lambda request: httpx.Response(401, text="Invalid API key"))

        result = await client.complete(QueryRequest(question="林黛玉是誰？"))

        assert result.success is False
        assert result.error_code == "API_ERROR"
        assert result.retryable is False

    @pytest.mark.asyncio
    async def test_complete_missing_choices(self):
        """Test that a body without choices is an invalid response."""
        client = make_client(lambda request: httpx.Response(200, json={"model": "sonar-pro"}))

        result = await client.complete(QueryRequest(question="林黛玉是誰？"))

        assert result.success is False
        assert result.error_code == "INVALID_RESPONSE"
        assert result.retryable is True

    @pytest.mark.asyncio
    async def test_complete_empty_content(self):
        """Test that an empty answer is an invalid response."""
        client = make_client(lambda request: httpx.Response(200, json=completion_body(content="")))

        result = await client.complete(QueryRequest(question="林黛玉是誰？"))

        assert result.success is False
        assert result.error_code == "INVALID_RESPONSE"

    @pytest.mark.parametrize(
        "body",
        [
            {"choices": [{"message": "hi"}]},
            {"choices": [{"message": {"content": ["x"]}}]},
            {"choices": [{"message": {"content": 42}}]},
            {"choices": {"0": {"message": {"content": "答案"}}}},
            {"choices": ["答案"]},
            {"choices": [{"message": {"content": "  \n "}}]},
            ["答案"],
        ],
    )
    @pytest.mark.asyncio
    async def test_complete_wrongly_shaped_body(self, body):
        """Test that a body of the wrong shape is an invalid response."""
        client = make_client(lambda request: httpx.Response(200, json=body))

        result = await client.complete(QueryRequest(question="林黛玉是誰？"))

        assert result.success is False
        assert result.error_code == "INVALID_RESPONSE"
        assert result.retryable is True

    @pytest.mark.asyncio
    async def test_complete_ignores_malformed_sources(self):
        """Test that non-list source fields fall back to the defaults."""
        client = make_client(
            lambda request: httpx.Response(
                200, json=completion_body(citations="https://www.zhihu.com", web_search_queries=None)
            )
        )

        result = await client.complete(QueryRequest(question="林黛玉是誰？"))

        assert result.success is True
        assert all(c.type == CitationType.DEFAULT for c in result.citations)
        assert result.grounding_metadata.search_queries == []

    @pytest.mark.asyncio
    async def test_complete_undecodable_body(self):
        """Test that a non-JSON body is an invalid response."""
        client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))

        result = await client.complete(QueryRequest(question="林黛玉是誰？"))

        assert result.success is False
        assert result.error_code == "INVALID_RESPONSE"

    @pytest.mark.asyncio
    async def test_complete_timeout(self):
        """Test that a transport timeout is retryable."""

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)
        result = await client.complete(QueryRequest(question="林黛玉是誰？"))

        assert result.success is False
        assert result.error_code == "TIMEOUT"
        assert result.retryable is True

    @pytest.mark.asyncio
    async def test_complete_with_mocked_post(self):
        """Test the response mapping against a mocked HTTP call."""
        client = PerplexityClient(PerplexityConfig(api_key="pplx-test-key"))

        mock_response = MagicMock()
        mock_response.json.return_value = completion_body(content="答案")
        mock_response.raise_for_status.return_value = None

        with patch.object(
            client.client, "post", new_callable=AsyncMock, return_value=mock_response
        ) as mock_post:
            result = await client.complete(
                QueryRequest(question="問題", model=SonarModel.SONAR_PRO, max_tokens=9000)
            )

            payload = mock_post.call_args[1]["json"]
            assert payload["model"] == "sonar-pro"
            assert payload["max_tokens"] == 4000
            assert "reasoning_effort" not in payload

        assert result.success is True
        assert result.answer == "答案"
        assert result.model_key == "sonar-pro"


class TestConnectionCheck:
    """Test connectivity self-test."""

    @pytest.mark.asyncio
    async def test_connection_success(self):
        """Test a working connection."""
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion_body(content="連線正常"))

        client = make_client(handler)

        assert await client.test_connection() == {"success": True}
        assert seen["body"]["model"] == "sonar-pro"
        assert seen["body"]["max_tokens"] == 50
        assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        """Test a failing connection."""
        client = make_client(lambda request: httpx.Response(401, text="Invalid API key"))

        result = await client.test_connection()

        assert result["success"] is False
        assert "Invalid API key" in result["error"]
        assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self):
        """Test that leaving the context closes the transport."""
        client = make_client(lambda request: httpx.Response(200, json=completion_body()))

        async with client as entered:
            assert entered is client

        assert client.client.is_closed


def prompt_of(request: httpx.Request) -> str:
    return json.loads(request.content)["messages"][0]["content"]


class TestBatch:
    """Test answering several questions at once."""

    @pytest.mark.asyncio
    async def test_batch_success(self):
        """Test responses come back in question order with metadata."""

        def handler(request):
            answer = "甲的答案" if "問題：甲" in prompt_of(request) else "乙的答案"
            return httpx.Response(200, json=completion_body(content=answer))

        client = make_client(handler)

        result = await client.batch([QueryRequest(question="甲"), QueryRequest(question="乙")])

        assert result.success is True
        assert result.errors is None
        assert [r.question for r in result.responses] == ["甲", "乙"]
        assert [r.answer for r in result.responses] == ["甲的答案", "乙的答案"]
        assert result.batch_metadata.total_questions == 2
        assert result.batch_metadata.successful_questions == 2
        assert result.batch_metadata.failed_questions == 0

    @pytest.mark.asyncio
    async def test_batch_shared_config(self):
        """Test that shared fields apply unless a question overrides them."""
        bodies = {}

        def handler(request):
            body = json.loads(request.content)
            key = "甲" if "問題：甲" in prompt_of(request) else "乙"
            bodies[key] = body
            return httpx.Response(200, json=completion_body())

        client = make_client(handler)

        await client.batch(
            [QueryRequest(question="甲"), QueryRequest(question="乙", temperature=0.1)],
            shared_config={"model": SonarModel.SONAR_PRO, "temperature": 0.7},
        )

        assert bodies["甲"]["model"] == "sonar-pro"
        assert bodies["甲"]["temperature"] == 0.7
        assert bodies["乙"]["model"] == "sonar-pro"
        assert bodies["乙"]["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_batch_partial_failure(self):
        """Test that one failed question is counted and reported."""

        def handler(request):
            if "問題：壞" in prompt_of(request):
                return httpx.Response(500, text="upstream down")
            return httpx.Response(200, json=completion_body())

        client = make_client(handler)

        result = await client.batch([QueryRequest(question="好"), QueryRequest(question="壞")])

        assert result.success is True
        assert result.responses[1].success is False
        assert result.batch_metadata.successful_questions == 1
        assert result.batch_metadata.failed_questions == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Question 2: ")
        assert "upstream down" in result.errors[0]

    @pytest.mark.asyncio
    async def test_batch_bounded_concurrency(self):
        """Test that no more than the allowed requests run at once."""
        state = {"active": 0, "peak": 0}

        async def handler(request):
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            await asyncio.sleep(0.01)
            state["active"] -= 1
            return httpx.Response(200, json=completion_body())

        client = make_client(handler)
        questions = [QueryRequest(question=f"問題{i}") for i in range(7)]

        result = await client.batch(questions, max_concurrency=2)

        assert result.batch_metadata.successful_questions == 7
        assert state["peak"] == 2

    @pytest.mark.asyncio
    async def test_batch_invalid_shared_config(self):
        """Test that an unusable shared field fails each question without a request."""

        def handler(request):
            raise AssertionError("request should not be sent")

        client = make_client(handler)

        result = await client.batch(
            [QueryRequest(question="甲")], shared_config={"temperature": "hot"}
        )

        assert result.success is False
        assert result.responses[0].success is False
        assert result.batch_metadata.failed_questions == 1

    @pytest.mark.asyncio
    async def test_batch_empty(self):
        """Test an empty batch."""
        client = make_client(lambda request: httpx.Response(200, json=completion_body()))

        result = await client.batch([])

        assert result.success is False
        assert result.responses == []
        assert result.batch_metadata.average_processing_time == 0.0

    @pytest.mark.asyncio
    async def test_batch_rejects_zero_concurrency(self):
        """Test that the concurrency limit must be positive."""
        client = make_client(lambda request: httpx.Response(200, json=completion_body()))

        with pytest.raises(ValueError):
            await client.batch([QueryRequest(question="甲")], max_concurrency=0)
