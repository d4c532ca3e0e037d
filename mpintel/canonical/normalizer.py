"""Text normalization for supplier material descriptions.

Supplier quotes describe the same lumber and hardware in wildly different
ways ("PT 2x4x8'", "Pressure Treated Pine 2 x 4 x 8 ea"). The normalizer
reduces a description to a lowercase token string with trade abbreviations
expanded, and pulls dimension tokens out into a separate signature so the
matcher can score words and sizes independently.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path

import yaml

_DEFAULT_ABBREVIATIONS = {
    "pt": "pressure treated",
    "acq": "pressure treated",
    "kd": "kiln dried",
    "kdat": "kiln dried",
    "syp": "southern yellow pine",
    "spf": "spruce pine fir",
    "df": "douglas fir",
    "doug fir": "douglas fir",
    "s4s": "surfaced four sides",
    "hdg": "hot dipped galvanized",
    "galv": "galvanized",
    "ss": "stainless steel",
    "osb": "oriented strand board",
    "ply": "plywood",
    "trtd": "treated",
}

_DEFAULT_UNITS = (
    "ea", "each", "pc", "pcs", "piece", "pieces",
    "lf", "bf", "sqft", "sf", "ft", "feet", "foot",
    "in", "inch", "inches", "lb", "lbs",
)

# 2x4x8, 5/4x6, 1-1/4x6x16
_NUMBER = r"\d+(?:-\d+/\d+|/\d+|\.\d+)?"
_DIMENSION_PATTERN = re.compile(rf"(?<![\w/.-])({_NUMBER}(?:\s*x\s*{_NUMBER})+)(?![\w/])")
# Inch, foot and "ft" marks glued to numbers
_MEASURE_MARKS = re.compile(r"(\d)\s*(?:\"|''|'|ft\b|feet\b|in\b|inch(?:es)?\b)")


@dataclass(frozen=True, slots=True)
class NormalizedDescription:
    """A description reduced for matching."""

    text: str
    tokens: frozenset[str] = field(default_factory=frozenset)
    dimensions: str | None = None


class SynonymExpander:
    """Expand trade abbreviations and strip unit tokens.

    Defaults cover common lumber yard shorthand; a YAML file with
    ``abbreviations`` (mapping) and ``units`` (list) keys replaces them.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        self.abbreviations: dict[str, str] = dict(_DEFAULT_ABBREVIATIONS)
        self.units: set[str] = set(_DEFAULT_UNITS)

        if config_path and config_path.exists():
            self._load_config(config_path)

        self._abbreviation_patterns = [
            (re.compile(r"\b" + re.escape(abbrev) + r"\b"), full)
            # Longest first so "doug fir" wins over "df"-style overlaps
            for abbrev, full in sorted(
                self.abbreviations.items(), key=lambda x: len(x[0]), reverse=True
            )
        ]

    def _load_config(self, config_path: Path) -> None:
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}

        abbreviations = config.get("abbreviations")
        if abbreviations:
            self.abbreviations = {
                str(k).lower(): str(v).lower() for k, v in abbreviations.items()
            }

        units = config.get("units")
        if units:
            self.units = {str(u).lower() for u in units}

    def expand_abbreviations(self, text: str) -> str:
        for pattern, full in self._abbreviation_patterns:
            text = pattern.sub(full, text)
        return text

    def strip_units(self, tokens: list[str]) -> list[str]:
        return [t for t in tokens if t not in self.units]


def _fold(text: str) -> str:
    """NFKD fold, drop combining marks, lowercase."""
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return text.lower().replace("×", "x")


def _dimension_signature(raw: str) -> str:
    return "x".join(part.strip() for part in raw.split("x"))


class DescriptionNormalizer:
    """Normalize material descriptions and catalog names identically."""

    def __init__(self, synonym_config: Path | None = None) -> None:
        self.expander = SynonymExpander(synonym_config)

    def normalize(self, text: str | None) -> NormalizedDescription:
        if not text:
            return NormalizedDescription(text="")

        s = _fold(text)
        s = re.sub(r"\bby\b", "x", s)
        s = _MEASURE_MARKS.sub(r"\1", s)

        dimensions = [_dimension_signature(m) for m in _DIMENSION_PATTERN.findall(s)]
        s = _DIMENSION_PATTERN.sub(" ", s)

        # "#2" style grades survive as tokens
        s = re.sub(r"[^\w#]+", " ", s)
        s = self.expander.expand_abbreviations(s)

        tokens = self.expander.strip_units(s.split())
        # Bare numbers left behind (lengths, counts) belong to the dimension
        # signature only when no dimension token was found.
        words = [t for t in tokens if not t.isdigit()]
        if not dimensions:
            numbers = [t for t in tokens if t.isdigit()]
            if numbers:
                dimensions = ["x".join(numbers)]

        normalized = " ".join(words)
        return NormalizedDescription(
            text=normalized,
            tokens=frozenset(words),
            dimensions=" ".join(dimensions) if dimensions else None,
        )

    def key(self, text: str | None) -> str:
        """Exact-match key: words plus dimension signature."""
        n = self.normalize(text)
        if n.dimensions:
            return f"{n.text} {n.dimensions}".strip()
        return n.text


def dimensions_agree(a: str | None, b: str | None) -> bool | None:
    """Compare two dimension signatures.

    Returns True when they are equal, False when both are present and
    conflict, and None when either is missing or one is a prefix of the
    other (e.g. ``5/4x6`` against ``5/4x6x16``).
    """
    if not a or not b:
        return None
    if a == b:
        return True
    parts_a, parts_b = a.split("x"), b.split("x")
    shorter, longer = sorted((parts_a, parts_b), key=len)
    if longer[: len(shorter)] == shorter:
        return None
    return False


_normalizer: DescriptionNormalizer | None = None


def get_normalizer(
    config_path: Path | None = None, reload: bool = False
) -> DescriptionNormalizer:
    """Get the shared normalizer instance."""
    global _normalizer
    if _normalizer is None or reload:
        _normalizer = DescriptionNormalizer(synonym_config=config_path)
    return _normalizer
