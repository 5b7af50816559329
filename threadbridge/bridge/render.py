"""Turn assistant output into chat-ready text."""

from typing import Mapping

from loguru import logger

from threadbridge.providers.base import AssistantProvider, AssistantServiceError, Citation, TextBlock


def render_citations(text: str, citations: list[Citation], source_names: Mapping[str, str]) -> str:
    """
    Replace cited spans with ``[k]`` markers and append a Sources block.

    Markers are numbered by first appearance of each distinct source. Spans
    whose source has no resolved name keep their marker but are not listed.

    Args:
        text: Assistant output text.
        citations: Annotations, each naming an exact substring of ``text``.
        source_names: Display names keyed by source id.

    Returns:
        The rendered text; ``text`` unchanged when there are no citations.
    """
    if not citations:
        return text

    ordered = list(citations)
    if all(c.start_index is not None for c in ordered):
        ordered.sort(key=lambda c: c.start_index)

    numbers: dict[str, int] = {}
    listing: list[tuple[int, str]] = []
    parts: list[str] = []
    next_number = 1
    cursor = 0

    for citation in ordered:
        span = citation.text
        if not span:
            continue
        start = citation.start_index
        if start is not None and start >= cursor and text[start:start + len(span)] == span:
            pos = start
        else:
            pos = text.find(span, cursor)
        if pos < 0:
            continue

        source = citation.source_id
        if source is not None and source in numbers:
            number = numbers[source]
        else:
            number = next_number
            next_number += 1
            if source is not None:
                numbers[source] = number
                name = source_names.get(source)
                if name:
                    listing.append((number, name))

        parts.append(text[cursor:pos])
        parts.append(f"[{number}]")
        cursor = pos + len(span)

    parts.append(text[cursor:])
    rendered = "".join(parts)
    if listing:
        rendered += "\n\nSources: \n" + "\n".join(f"[{n}]: {name}" for n, name in listing)
    return rendered


def split_for_chat(text: str, max_len: int) -> list[str]:
    """Split a message into chunks that fit within the platform limit."""
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break
        # Try to split on double newline
        cut = remaining.rfind("\n\n", 0, max_len)
        if cut <= 0:
            cut = remaining.rfind("\n", 0, max_len)
        if cut <= 0:
            cut = max_len
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    return chunks


class ResponseRenderer:
    """Resolves citation sources and renders assistant content blocks."""

    def __init__(self, provider: AssistantProvider):
        self.provider = provider
        self._source_names: dict[str, str] = {}

    async def render(self, blocks: list[TextBlock]) -> str:
        """Render every text block of a message, separated by blank lines."""
        await self._resolve_sources(
            {c.source_id for block in blocks for c in block.citations if c.source_id}
        )
        rendered = [
            render_citations(block.text, block.citations, self._source_names)
            for block in blocks
            if block.text
        ]
        return "\n\n".join(rendered)

    async def _resolve_sources(self, source_ids: set[str]) -> None:
        for source_id in sorted(source_ids - self._source_names.keys()):
            try:
                self._source_names[source_id] = await self.provider.file_name(source_id)
            except AssistantServiceError as e:
                logger.warning(f"Could not resolve citation source {source_id}: {e}")
