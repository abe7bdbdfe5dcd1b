"""Citation extraction and formatting for grounded answers."""

import re

from grounded_qa.query.models import Citation, CitationType

DEFAULT_MAX_CITATIONS = 5

# Sources at these positions are always shown, even without an in-text marker.
ALWAYS_INCLUDED_SOURCES = 5

CITATION_PATTERN = re.compile(r"\[(\d+)\]")

DOMAIN_TITLES: dict[str, str] = {
    "zh.wikipedia.org": "維基百科 (中文)",
    "wikipedia.org": "維基百科",
    "baidu.com": "百度百科",
    "zhihu.com": "知乎",
    "guoxue.com": "國學網",
    "literature.org.cn": "中國文學網",
    "cnki.net": "中國知網",
    "douban.com": "豆瓣",
    "academia.edu": "學術網",
    "jstor.org": "JSTOR",
}

DEFAULT_CITATIONS: tuple[Citation, ...] = (
    Citation(
        number="1",
        title="紅樓夢研究 - 維基百科",
        url="https://zh.wikipedia.org/wiki/紅樓夢",
        type=CitationType.DEFAULT,
        domain="wikipedia.org",
    ),
    Citation(
        number="2",
        title="曹雪芹與紅樓夢研究",
        url="https://www.guoxue.com/hongloumeng/",
        type=CitationType.DEFAULT,
        domain="guoxue.com",
    ),
)


def domain_from_url(url: str) -> str:
    """Bare domain of a URL, without scheme or leading ``www.``."""
    domain = re.sub(r"^https?://", "", url.strip())
    domain = re.sub(r"^www\.", "", domain)
    return domain.split("/")[0] or "unknown"


def title_from_url(url: str) -> str:
    """Friendly title for a source URL, based on its domain."""
    domain = domain_from_url(url)

    if domain in DOMAIN_TITLES:
        return DOMAIN_TITLES[domain]

    for domain_key, friendly_title in DOMAIN_TITLES.items():
        if domain_key in domain:
            return friendly_title

    return domain.split(".")[0]


def used_citation_numbers(text: str) -> set[str]:
    """Reference numbers that appear as ``[n]`` markers in the text."""
    return set(CITATION_PATTERN.findall(text or ""))


def extract_citations(
    text: str,
    sources: list[str] | None,
    search_queries: list[str] | None = None,
    max_citations: int = DEFAULT_MAX_CITATIONS,
) -> list[Citation]:
    """Build the numbered citation list for an answer.

    A source is kept when its 1-based position is referenced in the text or
    is among the first few sources. Without any sources the fixed default
    references are returned instead.

    Args:
        text: Answer text to scan for ``[n]`` markers
        sources: Source URLs in the order the service reported them
        search_queries: Search queries the service ran (informational)
        max_citations: Upper bound on the returned list

    Returns:
        Citations in source order
    """
    citations: list[Citation] = []

    if sources:
        used = used_citation_numbers(text)

        for index, url in enumerate(sources, 1):
            if not url or not url.strip():
                continue

            number = str(index)
            if number in used or index <= ALWAYS_INCLUDED_SOURCES:
                citations.append(
                    Citation(
                        number=number,
                        title=title_from_url(url),
                        url=url.strip(),
                        type=CitationType.WEB_CITATION,
                        domain=domain_from_url(url),
                    )
                )

    if not citations:
        citations = list(DEFAULT_CITATIONS)

    return citations[:max_citations]


def format_references(citations: list[Citation], title: str = "## 參考來源") -> str:
    """Render citations as a Markdown reference section."""
    if not citations:
        return ""

    lines = [title, ""]
    for citation in citations:
        lines.append(f"[{citation.number}] **[{citation.title}]({citation.url})**")
        if citation.domain:
            lines.append(f"   *{citation.domain}*")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
