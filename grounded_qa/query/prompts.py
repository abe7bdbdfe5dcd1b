"""Prompt construction for Dream of the Red Chamber questions."""

from typing import Any

from grounded_qa.config import get_model_spec
from grounded_qa.query.models import QueryRequest, QuestionContext

BASE_PROMPT = "你是一位資深的紅樓夢文學專家，具有深厚的古典文學素養和豐富的研究經驗。"

CONTEXT_PROMPTS: dict[QuestionContext, str] = {
    QuestionContext.CHARACTER: "請特別關注人物性格分析、人物關係和角色發展。",
    QuestionContext.PLOT: "請重點分析情節發展、故事結構和敘事技巧。",
    QuestionContext.THEME: "請深入探討主題思想、象徵意義和文學價值。",
    QuestionContext.GENERAL: "請提供全面而深入的文學分析。",
}

ANSWER_SECTIONS = (
    "直接回答問題的核心內容",
    "相關的文本依據和具體例證",
    "深入的文學分析和解讀",
    "必要的歷史文化背景",
    "與其他角色或情節的關聯",
)

LANGUAGE_INSTRUCTION = "請使用繁體中文回答，語言要學術性但易於理解。"


def _present(value: str | None) -> bool:
    return bool(value and value.strip())


def build_prompt(request: QueryRequest) -> str:
    """Build the instruction prompt for a question.

    Optional blocks (chapter context, selected text, current chapter) are
    only included when they carry text.

    Args:
        request: Question and its optional reading context

    Returns:
        Prompt string sent as the single user message
    """
    context_instruction = CONTEXT_PROMPTS.get(
        request.question_context or QuestionContext.GENERAL,
        CONTEXT_PROMPTS[QuestionContext.GENERAL],
    )

    parts = [BASE_PROMPT, context_instruction]

    if _present(request.chapter_context):
        parts.append(f"當前章回上下文：\n{request.chapter_context}")

    if _present(request.selected_text):
        parts.append(f'使用者選取的文字：\n"{request.selected_text}"')

    if _present(request.current_chapter):
        parts.append(f"目前閱讀章回：{request.current_chapter}")

    parts.append("請針對以下關於《紅樓夢》的問題提供詳細、準確的分析：")
    parts.append(f"問題：{request.question}")

    sections = "\n".join(f"{i}. {section}" for i, section in enumerate(ANSWER_SECTIONS, 1))
    parts.append(f"請在回答中包含：\n{sections}")

    prompt = "\n\n".join(parts)
    return f"{prompt}\n\n{LANGUAGE_INSTRUCTION}"


def build_request_payload(
    request: QueryRequest,
    *,
    model: str,
    temperature: float,
    max_tokens: int,
    reasoning_effort: str | None,
    stream: bool,
) -> dict[str, Any]:
    """Assemble the chat completions request body.

    ``max_tokens`` is capped at the model's catalogue limit and the reasoning
    effort is only sent to reasoning-capable models.
    """
    model_spec = get_model_spec(model)

    payload: dict[str, Any] = {
        "model": model_spec.name,
        "temperature": temperature,
        "max_tokens": min(max_tokens, model_spec.max_tokens),
        "stream": stream,
    }

    if model_spec.supports_reasoning and reasoning_effort:
        payload["reasoning_effort"] = str(getattr(reasoning_effort, "value", reasoning_effort))

    payload["messages"] = [{"role": "user", "content": build_prompt(request)}]
    return payload
