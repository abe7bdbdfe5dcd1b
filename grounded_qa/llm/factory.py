"""Factory for creating completion clients from configuration."""

import logging

from grounded_qa.config import Settings, get_settings
from grounded_qa.llm.perplexity import PerplexityClient, PerplexityConfig

logger = logging.getLogger(__name__)

_default_client: PerplexityClient | None = None


def perplexity_config_from_settings(settings: Settings) -> PerplexityConfig:
    """Translate application settings into client configuration."""
    return PerplexityConfig(
        api_key=settings.perplexity_api_key,
        base_url=settings.perplexity_base_url,
        model=settings.perplexity_model,
        reasoning_effort=settings.reasoning_effort,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.request_timeout,
        stream_chunk_delay=settings.stream_chunk_delay,
        max_citations=settings.max_citations,
        show_thinking_process=settings.show_thinking_process,
        debug=settings.perplexity_debug,
    )


def create_completion_client(settings: Settings | None = None) -> PerplexityClient:
    """Create a completion client from configuration.

    Args:
        settings: Settings to use, defaults to the global settings

    Returns:
        Configured completion client

    Raises:
        QAError: ``MISSING_CONFIG`` if no API key is configured
    """
    settings = settings or get_settings()

    return PerplexityClient(perplexity_config_from_settings(settings))


def get_default_client() -> PerplexityClient:
    """Get the process-wide client, creating it on first use.

    Prefer passing a client from ``create_completion_client`` explicitly;
    this handle exists for callers without their own wiring.
    """
    global _default_client
    if _default_client is None:
        _default_client = create_completion_client()
        logger.info("Created default completion client")
    return _default_client


def reset_default_client() -> None:
    """Forget the process-wide client (for test isolation)."""
    global _default_client
    _default_client = None
