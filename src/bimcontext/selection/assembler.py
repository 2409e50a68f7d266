"""Render selected chunks as a Markdown context block for the LLM prompt.

Output is localised (``de`` or ``en``): a header describing the query, then
one section per chunk kind, each chunk in compact or full form.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

from bimcontext.models import Chunk
from bimcontext.selection.budget import BudgetAllocation
from bimcontext.selection.query_analyzer import QueryIntent

Language = Literal["de", "en"]

FORMAT_VERSION = "1.0"
PREVIEW_CHARS = 200
COMPACT_ENTITY_TYPES = 5
SCORE_TIE_WINDOW = 0.1
DEFAULT_SCORE = 0.5

_LABELS: dict[str, dict[str, str]] = {
    "de": {
        "title": "## Kontext für Ihre Anfrage",
        "query_type": "**Abfragetyp:**",
        "requested": "**Gesuchte Elemente:**",
        "spatial": "**Räumlicher Kontext:**",
        "selected": "**Ausgewählte Chunks:**",
        "chunks": "Chunks",
        "floor": "Etage",
        "metadata": "Metadaten",
        "entity_types": "Entity-Typen",
        "location": "Position",
        "token_count": "Token-Anzahl",
        "counts": "**Gefundene Anzahlen:**",
        "found_in": "**Gefunden in:**",
        "by_floor": "**Verteilung nach Stockwerk:**",
        "systems": "**Gefundene Systeme:**",
    },
    "en": {
        "title": "## Context for Your Query",
        "query_type": "**Query Type:**",
        "requested": "**Requested Elements:**",
        "spatial": "**Spatial Context:**",
        "selected": "**Selected Chunks:**",
        "chunks": "chunks",
        "floor": "Floor",
        "metadata": "Metadata",
        "entity_types": "Entity Types",
        "location": "Location",
        "token_count": "Token Count",
        "counts": "**Found Counts:**",
        "found_in": "**Found in:**",
        "by_floor": "**Distribution by Floor:**",
        "systems": "**Found Systems:**",
    },
}

_INTENT_DESCRIPTIONS: dict[str, dict[str, str]] = {
    "de": {
        "count": "Zählung von Elementen",
        "find": "Suche nach spezifischen Elementen",
        "spatial": "Räumliche Abfrage",
        "system": "System-bezogene Abfrage",
        "general": "Allgemeine Abfrage",
    },
    "en": {
        "count": "Counting elements",
        "find": "Finding specific elements",
        "spatial": "Spatial query",
        "system": "System-related query",
        "general": "General query",
    },
}

_KIND_NAMES: dict[str, dict[str, str]] = {
    "de": {
        "spatial": "Räumliche Informationen",
        "system": "System-Komponenten",
        "element-type": "Element-Typen",
        "hybrid": "Abfrage-Aggregate",
    },
    "en": {
        "spatial": "Spatial Information",
        "system": "System Components",
        "element-type": "Element Types",
        "hybrid": "Query Aggregates",
    },
}

_ENTITY_COUNT_RE = re.compile(r"Entity Count: (\w+) = (\d+)")


@dataclass
class FormattingOptions:
    """Rendering switches.

    Attributes:
        include_metadata: Full mode adds a metadata block per chunk. In
            compact mode a 200-character content preview is shown instead
            when this is off.
        include_headers: Render the query header and per-kind section titles.
        highlight_keywords: Bold intent keywords in full-mode content.
        compact_mode: One summary line per chunk instead of the full body.
        language: ``de`` or ``en``.
    """

    include_metadata: bool = True
    include_headers: bool = True
    highlight_keywords: bool = False
    compact_mode: bool = False
    language: Language = "de"


@dataclass
class ContextMetadata:
    total_chunks: int
    total_tokens: int
    coverage: int
    chunk_kinds: dict[str, int] = field(default_factory=dict)
    format_version: str = FORMAT_VERSION


@dataclass
class AssembledContext:
    header: str
    content: list[str]
    metadata: ContextMetadata

    def render(self) -> str:
        body = "\n".join(self.content)
        return f"{self.header}\n{body}" if self.header else body


def highlight_keywords(content: str, keywords: Sequence[str]) -> str:
    """Bold whole-word keyword matches, case-insensitively, longest keyword first."""
    for keyword in sorted(keywords, key=len, reverse=True):
        if not keyword:
            continue
        pattern = re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)
        content = pattern.sub(lambda m: f"**{m.group(0)}**", content)
    return content


class ContextAssembler:
    def assemble_context(
        self,
        chunks: Sequence[Chunk],
        intent: QueryIntent,
        budget: BudgetAllocation | None = None,
        options: FormattingOptions | None = None,
        scores: Mapping[str, float] | None = None,
    ) -> AssembledContext:
        """Group, order and render *chunks* for *intent*.

        Args:
            chunks: The budget-bounded selection.
            intent: Analysed query; drives ordering, header and highlighting.
            budget: The allocation the selection was made under (informational).
            options: Rendering switches; defaults to full German output.
            scores: Relevance score per chunk id; missing ids count as 0.5.
        """
        options = options or FormattingOptions()
        scores = scores or {}

        organized = organize_chunks(chunks, intent, scores)
        header = self._header(intent, chunks, options)
        content = self._format(organized, intent, options)
        return AssembledContext(header=header, content=content, metadata=context_metadata(chunks))

    # -- rendering --------------------------------------------------------

    @staticmethod
    def _header(intent: QueryIntent, chunks: Sequence[Chunk], options: FormattingOptions) -> str:
        if not options.include_headers:
            return ""
        labels = _LABELS[options.language]
        lines = [
            labels["title"],
            "",
            f"{labels['query_type']} {_INTENT_DESCRIPTIONS[options.language][intent.kind]}",
        ]
        if intent.entity_types:
            lines.append(f"{labels['requested']} {', '.join(intent.entity_types)}")
        if intent.spatial_terms:
            lines.append(f"{labels['spatial']} {', '.join(intent.spatial_terms)}")
        lines.extend(["", f"{labels['selected']} {len(chunks)}", "", "---", ""])
        return "\n".join(lines)

    def _format(
        self, organized: dict[str, list[Chunk]], intent: QueryIntent, options: FormattingOptions
    ) -> list[str]:
        labels = _LABELS[options.language]
        sections: list[str] = []
        for kind, members in organized.items():
            if options.include_headers:
                name = _KIND_NAMES[options.language].get(kind, kind)
                sections.extend([f"### {name} ({len(members)} {labels['chunks']})", ""])
            for position, chunk in enumerate(members):
                if options.compact_mode:
                    sections.extend(_format_compact(chunk, position, intent, options))
                else:
                    sections.extend(_format_full(chunk, position, intent, options))
            sections.append("")
        return sections


def organize_chunks(
    chunks: Sequence[Chunk], intent: QueryIntent, scores: Mapping[str, float]
) -> dict[str, list[Chunk]]:
    """Group by kind; sort each group by score, breaking near-ties.

    Scores within 0.1 of each other tie; ties order by floor for spatial
    intents, otherwise by ascending token count.
    """

    def compare(a: Chunk, b: Chunk) -> int:
        score_a = scores.get(a.id, DEFAULT_SCORE)
        score_b = scores.get(b.id, DEFAULT_SCORE)
        if abs(score_a - score_b) > SCORE_TIE_WINDOW:
            return -1 if score_a > score_b else 1
        if intent.kind == "spatial" and a.metadata.has_spatial_info and b.metadata.has_spatial_info:
            return (a.metadata.floor or 0) - (b.metadata.floor or 0)
        return a.token_count - b.token_count

    groups: dict[str, list[Chunk]] = {}
    for chunk in chunks:
        groups.setdefault(chunk.kind, []).append(chunk)
    return {kind: sorted(members, key=functools.cmp_to_key(compare)) for kind, members in groups.items()}


def _location(chunk: Chunk, language: Language) -> str | None:
    meta = chunk.metadata
    if not meta.has_spatial_info:
        return None
    parts = []
    if meta.floor is not None:
        parts.append(f"{_LABELS[language]['floor']} {meta.floor}")
    if meta.zone:
        parts.append(f"Zone {meta.zone}")
    if meta.building and not parts:
        parts.append(meta.building)
    return ", ".join(parts)


def _format_compact(
    chunk: Chunk, position: int, intent: QueryIntent, options: FormattingOptions
) -> list[str]:
    location = _location(chunk, options.language)
    suffix = f" | {location}" if location else ""
    lines = [f"**[{position + 1}]** {chunk.summary}{suffix}"]

    relevant = [
        t for t in chunk.metadata.entity_types
        if not intent.entity_types or t in intent.entity_types
    ][:COMPACT_ENTITY_TYPES]
    if relevant:
        lines.append(f"> {', '.join(relevant)}")

    if not options.include_metadata:
        lines.append(f"> {chunk.content[:PREVIEW_CHARS].strip()}...")

    lines.append("")
    return lines


def _format_full(
    chunk: Chunk, position: int, intent: QueryIntent, options: FormattingOptions
) -> list[str]:
    labels = _LABELS[options.language]
    lines = [f"#### Chunk {position + 1}: {chunk.summary}"]

    if options.include_metadata:
        lines.extend(["", f"**{labels['metadata']}:**"])
        if chunk.metadata.entity_types:
            lines.append(f"- {labels['entity_types']}: {', '.join(chunk.metadata.entity_types)}")
        location = _location(chunk, options.language)
        if location:
            lines.append(f"- {labels['location']}: {location}")
        lines.append(f"- {labels['token_count']}: {chunk.token_count}")
        lines.append("")

    body = chunk.content
    if options.highlight_keywords and intent.keywords:
        body = highlight_keywords(body, intent.keywords)
    lines.extend(["```", body, "```", ""])
    return lines


def context_metadata(chunks: Sequence[Chunk]) -> ContextMetadata:
    """Totals, per-kind counts and a rough coverage figure (5 per distinct entity type, max 100)."""
    kinds: dict[str, int] = {}
    entity_types: set[str] = set()
    for chunk in chunks:
        kinds[chunk.kind] = kinds.get(chunk.kind, 0) + 1
        entity_types.update(chunk.metadata.entity_types)
    return ContextMetadata(
        total_chunks=len(chunks),
        total_tokens=sum(c.token_count for c in chunks),
        coverage=min(100, 5 * len(entity_types)),
        chunk_kinds=kinds,
    )


# ---------------------------------------------------------------------------
# Query-type summaries
# ---------------------------------------------------------------------------


def create_query_type_summary(
    chunks: Sequence[Chunk], intent: QueryIntent, language: Language = "de"
) -> list[str]:
    """Short intent-specific digest lines, e.g. entity counts for count queries."""
    labels = _LABELS[language]

    if intent.kind == "count":
        counts: dict[str, int] = {}
        for chunk in chunks:
            for entity_type, number in _ENTITY_COUNT_RE.findall(chunk.content):
                counts[entity_type] = counts.get(entity_type, 0) + int(number)
        if not counts:
            return []
        return [labels["counts"], *(f"- {t}: {n}" for t, n in counts.items())]

    if intent.kind == "find":
        floors = list(dict.fromkeys(
            f"{labels['floor']} {c.metadata.floor}" for c in chunks if c.metadata.floor is not None
        ))
        return [f"{labels['found_in']} {', '.join(floors)}"] if floors else []

    if intent.kind == "spatial":
        per_floor: dict[int, int] = {}
        for chunk in chunks:
            if chunk.metadata.floor is not None:
                per_floor[chunk.metadata.floor] = per_floor.get(chunk.metadata.floor, 0) + 1
        if not per_floor:
            return []
        return [
            labels["by_floor"],
            *(f"- {labels['floor']} {f}: {n} chunks" for f, n in sorted(per_floor.items())),
        ]

    if intent.kind == "system":
        systems = list(dict.fromkeys(c.metadata.system for c in chunks if c.metadata.system))
        return [f"{labels['systems']} {', '.join(systems)}"] if systems else []

    if language == "de":
        return [f"**Übersicht:** {len(chunks)} relevante Abschnitte gefunden"]
    return [f"**Overview:** Found {len(chunks)} relevant sections"]
