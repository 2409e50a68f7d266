"""Rule-based query intent analysis for German and English questions.

No model is involved: intent kind, entity types, keywords, spatial and
system terms all come from fixed keyword tables and regexes, and the
confidence is an additive score over what was found.

Intent kind cascade (first match wins):
  count → spatial → system → find → general
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Literal

IntentKind = Literal["count", "find", "spatial", "system", "general"]

WILDCARD = "*"

_KIND_PATTERNS: tuple[tuple[IntentKind, re.Pattern[str]], ...] = (
    ("count", re.compile(r"wie viele|anzahl|count|zähle|number of|total|gesamt", re.I)),
    ("spatial", re.compile(r"etage|stockwerk|raum|bereich|zone|floor|room|level|geschoss", re.I)),
    ("system", re.compile(r"heizung|lüftung|elektro|sanitär|hvac|mep|electrical|plumbing", re.I)),
    ("find", re.compile(r"zeige|finde|suche|\bwo\b|show|find|search|where|locate", re.I)),
)

KNOWN_TYPES: tuple[str, ...] = (
    "IFCWALL", "IFCDOOR", "IFCWINDOW", "IFCSLAB", "IFCBEAM", "IFCCOLUMN",
    "IFCROOF", "IFCSTAIR", "IFCRAILING", "IFCSPACE", "IFCZONE", "IFCBUILDING",
    "IFCBUILDINGSTOREY", "IFCSITE", "IFCFURNISHINGELEMENT", "IFCEQUIPMENTELEMENT",
    "IFCFLOWFITTING", "IFCFLOWSEGMENT", "IFCFLOWTERMINAL", "IFCDISTRIBUTIONELEMENT",
)

GERMAN_TERMS: dict[str, tuple[str, ...]] = {
    "wand": ("IFCWALL", "IFCCURTAINWALL"),
    "wände": ("IFCWALL", "IFCCURTAINWALL"),
    "tür": ("IFCDOOR",),
    "türen": ("IFCDOOR",),
    "fenster": ("IFCWINDOW",),
    "decke": ("IFCSLAB", "IFCROOF"),
    "decken": ("IFCSLAB", "IFCROOF"),
    "dach": ("IFCROOF",),
    "säule": ("IFCCOLUMN",),
    "säulen": ("IFCCOLUMN",),
    "stütze": ("IFCCOLUMN",),
    "stützen": ("IFCCOLUMN",),
    "träger": ("IFCBEAM",),
    "balken": ("IFCBEAM",),
    "treppe": ("IFCSTAIR", "IFCSTAIRFLIGHT"),
    "treppen": ("IFCSTAIR", "IFCSTAIRFLIGHT"),
    "raum": ("IFCSPACE",),
    "räume": ("IFCSPACE",),
    "zimmer": ("IFCSPACE",),
    "geschoss": ("IFCBUILDINGSTOREY",),
    "stockwerk": ("IFCBUILDINGSTOREY",),
    "etage": ("IFCBUILDINGSTOREY",),
    "gebäude": ("IFCBUILDING",),
    "möbel": ("IFCFURNISHINGELEMENT",),
    "einrichtung": ("IFCFURNISHINGELEMENT",),
    "rohr": ("IFCPIPESEGMENT", "IFCFLOWSEGMENT"),
    "rohre": ("IFCPIPESEGMENT", "IFCFLOWSEGMENT"),
    "leitung": ("IFCFLOWSEGMENT", "IFCCABLESEGMENT"),
    "leitungen": ("IFCFLOWSEGMENT", "IFCCABLESEGMENT"),
}

ENGLISH_TERMS: dict[str, tuple[str, ...]] = {
    "wall": ("IFCWALL", "IFCCURTAINWALL"),
    "walls": ("IFCWALL", "IFCCURTAINWALL"),
    "door": ("IFCDOOR",),
    "doors": ("IFCDOOR",),
    "window": ("IFCWINDOW",),
    "windows": ("IFCWINDOW",),
    "floor": ("IFCSLAB",),
    "floors": ("IFCSLAB",),
    "slab": ("IFCSLAB",),
    "roof": ("IFCROOF",),
    "column": ("IFCCOLUMN",),
    "columns": ("IFCCOLUMN",),
    "beam": ("IFCBEAM",),
    "beams": ("IFCBEAM",),
    "space": ("IFCSPACE",),
    "spaces": ("IFCSPACE",),
    "room": ("IFCSPACE",),
    "rooms": ("IFCSPACE",),
    "stair": ("IFCSTAIR", "IFCSTAIRFLIGHT"),
    "stairs": ("IFCSTAIR", "IFCSTAIRFLIGHT"),
    "furniture": ("IFCFURNISHINGELEMENT",),
    "equipment": ("IFCEQUIPMENTELEMENT",),
    "pipe": ("IFCPIPESEGMENT", "IFCFLOWSEGMENT"),
    "pipes": ("IFCPIPESEGMENT", "IFCFLOWSEGMENT"),
    "duct": ("IFCDUCTSEGMENT", "IFCFLOWSEGMENT"),
    "ducts": ("IFCDUCTSEGMENT", "IFCFLOWSEGMENT"),
}

_HVAC_TRIGGERS = ("hvac", "lüftung", "heizung")
_HVAC_TYPES = ("IFCFLOWSEGMENT", "IFCFLOWTERMINAL", "IFCFLOWFITTING")
_ELECTRICAL_TRIGGERS = ("electrical", "elektro")
_ELECTRICAL_TYPES = ("IFCCABLESEGMENT", "IFCELECTRICALELEMENT", "IFCLIGHTFIXTURE")

SYSTEM_KEYWORDS: dict[str, tuple[str, ...]] = {
    "hvac": ("hvac", "heating", "cooling", "ventilation", "air", "klimaanlage", "lüftung", "heizung"),
    "electrical": ("electrical", "electric", "power", "lighting", "elektro", "strom", "beleuchtung"),
    "plumbing": ("plumbing", "water", "pipe", "drainage", "sanitär", "wasser", "rohr"),
    "structural": ("structural", "structure", "beam", "column", "slab", "tragwerk", "stütze", "decke"),
}

# Checked in this order; matched as whole words.
FLOOR_KEYWORDS: tuple[tuple[int, tuple[str, ...]], ...] = (
    (0, ("ground", "erdgeschoss", "eg", "level 0", "floor 0")),
    (1, ("first", "erstes", "1st", "level 1", "floor 1", "1. og")),
    (2, ("second", "zweites", "2nd", "level 2", "floor 2", "2. og")),
    (-1, ("basement", "keller", "untergeschoss", "ug", "level -1")),
)

_FLOOR_NUMBER_PATTERNS = (
    re.compile(r"floor\s*(\d+)"),
    re.compile(r"level\s*(\d+)"),
    re.compile(r"(\d+)\.\s*stock"),
    re.compile(r"(\d+)\.\s*etage"),
    re.compile(r"(\d+)\.\s*og"),
)

STOPWORDS = frozenset(
    [
        "der", "die", "das", "den", "dem", "des", "ein", "eine", "einer", "eines",
        "und", "oder", "aber", "mit", "von", "zu", "in", "an", "auf", "für",
        "the", "a", "and", "or", "but", "with", "from", "to", "on", "for",
        "ist", "sind", "war", "waren", "is", "are", "was", "were",
    ]
)

_FLOOR_TERM_RE = re.compile(r"\d+\.?\s*(?:og|ug|stock|etage|geschoss|floor|level)", re.I)
_ZONE_TERM_RES = (
    re.compile(r"zone\s+[a-z0-9]+", re.I),
    re.compile(r"bereich\s+[a-z0-9]+", re.I),
    re.compile(r"raum\s+[a-z0-9.-]+", re.I),
    re.compile(r"room\s+[a-z0-9.-]+", re.I),
)
NAMED_AREAS = (
    "nordflügel", "südflügel", "ostflügel", "westflügel",
    "north wing", "south wing", "east wing", "west wing",
    "hauptgebäude", "nebengebäude", "anbau",
    "main building", "annex", "extension",
)

_WILDCARD_RE = re.compile(r"\*|\ball\b|\balle\b")
_KEYWORD_STRIP_RE = re.compile(r"[^\wäöüß-]")


@dataclass
class QueryIntent:
    """Structured interpretation of one free-text query."""

    kind: IntentKind = "general"
    entity_types: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    spatial_terms: list[str] = field(default_factory=list)
    system_terms: list[str] = field(default_factory=list)
    confidence: float = 0.5
    execution_time_ms: float = 0.0

    @property
    def wants_all_types(self) -> bool:
        return WILDCARD in self.entity_types


def stem(word: str) -> str:
    """Crude German/English suffix stripping."""
    if word.endswith("en") and len(word) > 4:
        return word[:-2]
    if word.endswith("er") and len(word) > 4:
        return word[:-2]
    if word.endswith("e") and len(word) > 3:
        return word[:-1]
    if word.endswith("s") and len(word) > 3:
        return word[:-1]
    return word


def _has_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(phrase)}(?!\w)", text) is not None


class QueryAnalyzer:
    """Stateless; one instance can serve any number of queries."""

    def analyze_intent(self, query: str) -> QueryIntent:
        start = time.perf_counter()
        text = query.lower()

        entity_types = self.extract_entity_types(text)
        keywords = self.extract_keywords(text)
        spatial_terms = self.extract_spatial_terms(text)
        system_terms = self.extract_system_terms(text)
        kind = self.detect_kind(text)

        return QueryIntent(
            kind=kind,
            entity_types=entity_types,
            keywords=keywords,
            spatial_terms=spatial_terms,
            system_terms=system_terms,
            confidence=confidence_for(kind, entity_types, keywords, spatial_terms, system_terms),
            execution_time_ms=(time.perf_counter() - start) * 1000,
        )

    # -- intent parts -----------------------------------------------------

    @staticmethod
    def detect_kind(text: str) -> IntentKind:
        for kind, pattern in _KIND_PATTERNS:
            if pattern.search(text):
                return kind
        return "general"

    @staticmethod
    def extract_entity_types(text: str) -> list[str]:
        """Union of exact type names, bilingual terms, wildcard and system types."""
        text = text.lower()
        found: list[str] = [t for t in KNOWN_TYPES if t.lower() in text]

        if _WILDCARD_RE.search(text):
            found.append(WILDCARD)

        for terms in (GERMAN_TERMS, ENGLISH_TERMS):
            for term, types in terms.items():
                if term in text:
                    found.extend(types)

        if any(t in text for t in _HVAC_TRIGGERS):
            found.extend(_HVAC_TYPES)
        if any(t in text for t in _ELECTRICAL_TRIGGERS):
            found.extend(_ELECTRICAL_TYPES)

        return list(dict.fromkeys(found))

    @staticmethod
    def extract_keywords(text: str) -> list[str]:
        """Lower-cased, stopword-filtered, stemmed and deduplicated words."""
        words = (_KEYWORD_STRIP_RE.sub("", w) for w in text.lower().split())
        kept = (w for w in words if len(w) > 2 and w not in STOPWORDS)
        return list(dict.fromkeys(stem(w) for w in kept))

    @staticmethod
    def extract_spatial_terms(text: str) -> list[str]:
        text = text.lower()
        terms = [m.group(0) for m in _FLOOR_TERM_RE.finditer(text)]
        for pattern in _ZONE_TERM_RES:
            terms.extend(m.group(0) for m in pattern.finditer(text))
        terms.extend(area for area in NAMED_AREAS if area in text)
        return terms

    @staticmethod
    def extract_system_terms(text: str) -> list[str]:
        """For each discipline with a keyword hit: its name plus every matched keyword."""
        text = text.lower()
        terms: list[str] = []
        for system, keywords in SYSTEM_KEYWORDS.items():
            hits = [k for k in keywords if k in text]
            if hits:
                terms.append(system)
                terms.extend(hits)
        return list(dict.fromkeys(terms))

    # -- single-value helpers ---------------------------------------------

    @staticmethod
    def extract_floor(query: str) -> int | None:
        """Named floors first (ground, first, second, basement), then numeric forms."""
        text = query.lower()
        for number, keywords in FLOOR_KEYWORDS:
            if any(_has_phrase(text, k) for k in keywords):
                return number
        for pattern in _FLOOR_NUMBER_PATTERNS:
            match = pattern.search(text)
            if match:
                return int(match.group(1))
        return None

    @staticmethod
    def extract_system(query: str) -> str | None:
        text = query.lower()
        for system, keywords in SYSTEM_KEYWORDS.items():
            if any(k in text for k in keywords):
                return system
        return None


def confidence_for(
    kind: IntentKind,
    entity_types: list[str],
    keywords: list[str],
    spatial_terms: list[str],
    system_terms: list[str],
) -> float:
    score = 0.5
    if kind != "general":
        score += 0.2
    if entity_types:
        score += 0.2
    if spatial_terms:
        score += 0.1
    if system_terms:
        score += 0.1
    if len(keywords) < 2:
        score -= 0.1
    return max(0.0, min(1.0, score))
