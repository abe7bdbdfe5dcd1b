"""Command-line entry point for the grounded Q&A client."""

import argparse
import asyncio
import logging
import sys
from contextlib import aclosing

from dotenv import load_dotenv

from grounded_qa.config import ReasoningEffort, SonarModel, get_settings
from grounded_qa.llm import QAError, create_completion_client, format_error_for_user
from grounded_qa.query import (
    QueryRequest,
    QuestionContext,
    format_references,
    validate_query_request,
)

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="grounded-qa",
        description="Ask a grounded question about Dream of the Red Chamber.",
    )
    parser.add_argument("question", nargs="?", help="Question to ask")
    parser.add_argument("--check", action="store_true", help="Only test the API connection")
    parser.add_argument("--stream", action="store_true", help="Print the answer as it arrives")
    parser.add_argument(
        "--context",
        choices=[c.value for c in QuestionContext],
        help="Topic focus for the prompt",
    )
    parser.add_argument("--model", choices=[m.value for m in SonarModel], help="Sonar model")
    parser.add_argument(
        "--effort", choices=[e.value for e in ReasoningEffort], help="Reasoning effort"
    )
    parser.add_argument("--selected-text", help="Passage the question refers to")
    parser.add_argument("--chapter-context", help="Text of the chapter being read")
    parser.add_argument(
        "--hide-thinking", action="store_true", help="Drop the model's reasoning trace"
    )
    return parser.parse_args(argv)


async def run_query(args: argparse.Namespace) -> int:
    """Run one question (or the connection check) and print the result."""
    try:
        client = create_completion_client()
    except QAError as e:
        logger.error(f"Configuration error: {e.message}")
        guidance = format_error_for_user(e)
        print(f"{guidance.title}：{guidance.message}", file=sys.stderr)
        for suggestion in guidance.suggestions:
            print(suggestion, file=sys.stderr)
        return 2

    async with client:
        if args.check:
            result = await client.test_connection()
            if result["success"]:
                print("Connection OK")
                return 0
            print(f"Connection failed: {result.get('error')}", file=sys.stderr)
            return 1

        request = QueryRequest(
            question=args.question or "",
            selected_text=args.selected_text,
            chapter_context=args.chapter_context,
            question_context=args.context,
            model=args.model,
            reasoning_effort=args.effort,
            enable_streaming=args.stream,
            show_thinking_process=False if args.hide_thinking else None,
        )

        problems = validate_query_request(request)
        if problems:
            for problem in problems:
                print(f"Invalid request: {problem}", file=sys.stderr)
            return 2

        if request.enable_streaming:
            printed = ""
            last = None
            async with aclosing(client.stream(request)) as chunks:
                async for chunk in chunks:
                    last = chunk
                    if chunk.error:
                        break
                    # Cleaning can rewrite earlier text, so only print appended text.
                    if chunk.full_content.startswith(printed):
                        sys.stdout.write(chunk.full_content[len(printed):])
                        sys.stdout.flush()
                        printed = chunk.full_content

            if last is None or last.error:
                print(last.full_content if last else "No response", file=sys.stderr)
                return 1

            print()
            print(format_references(last.citations))
            return 0

        response = await client.complete(request)
        print(response.answer)
        if not response.success:
            return 1

        print()
        print(format_references(response.citations))
        logger.info(f"Answered in {response.processing_time:.2f}s using {response.model_used}")
        return 0


def run(argv: list[str] | None = None) -> None:
    """Console script entry point."""
    load_dotenv()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    args = parse_args(argv)
    if not args.check and not args.question:
        print("A question is required unless --check is given", file=sys.stderr)
        sys.exit(2)

    sys.exit(asyncio.run(run_query(args)))


if __name__ == "__main__":
    run()
