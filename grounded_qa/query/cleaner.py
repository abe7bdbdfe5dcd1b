"""Post-processing of raw model output."""

import re

THINK_PATTERN = re.compile(r"<think[^>]*>(.*?)</think>", re.DOTALL)

# An opening tag with no close yet runs to the end of the text.
INCOMPLETE_THINK_PATTERN = re.compile(r"<think[^>]*>(.*)\Z", re.DOTALL)

MARKUP_PATTERNS = (
    re.compile(r"</?div[^>]*>", re.IGNORECASE),
    re.compile(r"</?small[^>]*>", re.IGNORECASE),
    re.compile(r"</?strong[^>]*>", re.IGNORECASE),
    re.compile(r"</?span[^>]*>", re.IGNORECASE),
    re.compile(r"</?p(?:\s[^>]*)?>", re.IGNORECASE),
    re.compile(r"<br[^>]*/?>", re.IGNORECASE),
    re.compile(r"</?(?!think\b)[a-zA-Z][^>]*>"),
)

EXCESS_NEWLINES = re.compile(r"\n\s*\n\s*\n")
HORIZONTAL_SPACE = re.compile(r"[ \t]+")

STRAY_THINK_TAG = re.compile(r"</?think[^>]*>", re.IGNORECASE)

THINKING_LABEL = "**💭 思考過程：**"
INCOMPLETE_THINKING_LABEL = "**💭 思考過程（不完整）：**"


def _thinking_block(label: str, content: str) -> str:
    content = content.strip()
    if not content:
        return ""
    return f"\n\n{label}\n\n{content}\n\n---\n\n"


def _clean_once(text: str, show_thinking: bool) -> str:
    # Markup first; an unclosed trace then runs to the end of the text.
    for pattern in MARKUP_PATTERNS:
        text = pattern.sub("", text)

    if show_thinking:
        text = THINK_PATTERN.sub(lambda m: _thinking_block(THINKING_LABEL, m.group(1)), text)
        text = INCOMPLETE_THINK_PATTERN.sub(
            lambda m: _thinking_block(INCOMPLETE_THINKING_LABEL, m.group(1)), text
        )
    else:
        text = THINK_PATTERN.sub("", text)
        text = INCOMPLETE_THINK_PATTERN.sub("", text)

    text = STRAY_THINK_TAG.sub("", text)

    text = EXCESS_NEWLINES.sub("\n\n", text)
    text = HORIZONTAL_SPACE.sub(" ", text)
    return text.strip()


def clean_response(text: str | None, show_thinking: bool = True) -> str:
    """Strip or format the reasoning trace and remove stray markup.

    With ``show_thinking`` the ``<think>`` content is kept as a labelled
    block, otherwise it is dropped. Calling this on its own output returns
    the output unchanged.

    Args:
        text: Raw model output, possibly partial
        show_thinking: Keep the reasoning trace

    Returns:
        Cleaned answer text
    """
    if not text:
        return ""

    # Removing a tag can splice a new one together; repeat until stable.
    previous = None
    cleaned = text
    while cleaned != previous:
        previous = cleaned
        cleaned = _clean_once(cleaned, show_thinking)

    return cleaned


def has_thinking_process(text: str | None) -> bool:
    """Whether raw output contains a reasoning trace."""
    return bool(text) and "<think>" in text
