"""Caller-side validation of question requests."""

from grounded_qa.query.models import QueryRequest

MAX_QUESTION_LENGTH = 1000
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 1.0
MIN_MAX_TOKENS = 1
MAX_MAX_TOKENS = 8000


def validate_query_request(request: QueryRequest) -> list[str]:
    """List the problems that should stop a request from being sent.

    Args:
        request: Request to check

    Returns:
        Human-readable problems; empty when the request is valid
    """
    errors = []

    if not request.question or not request.question.strip():
        errors.append("User question is required and cannot be empty")
    elif len(request.question) > MAX_QUESTION_LENGTH:
        errors.append(f"User question is too long (maximum {MAX_QUESTION_LENGTH} characters)")

    if request.temperature is not None and not (
        MIN_TEMPERATURE <= request.temperature <= MAX_TEMPERATURE
    ):
        errors.append(f"Temperature must be between {MIN_TEMPERATURE:g} and {MAX_TEMPERATURE:g}")

    if request.max_tokens is not None and not (
        MIN_MAX_TOKENS <= request.max_tokens <= MAX_MAX_TOKENS
    ):
        errors.append(f"Max tokens must be between {MIN_MAX_TOKENS} and {MAX_MAX_TOKENS}")

    return errors
