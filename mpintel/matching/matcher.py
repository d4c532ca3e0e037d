"""Material matcher: free-text line descriptions to canonical materials.

Scoring per candidate:
1. Exact hit: the description's normalized key equals the key of the
   canonical name, a synonym or a confirmed alias -> 1.0
2. Otherwise 0.5 * token Jaccard + 0.5 * RapidFuzz token_sort_ratio,
   best over the candidate's names
3. Dimension signatures that agree add a bonus; conflicting ones scale
   the score down

Ties at 4 decimals go to the more popular material, then the canonical
name, then the id, so repeated runs over the same snapshot agree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from rapidfuzz import fuzz

from mpintel.canonical.normalizer import (
    DescriptionNormalizer,
    NormalizedDescription,
    dimensions_agree,
    get_normalizer,
)
from mpintel.config import MatchingConfig, get_config
from mpintel.matching.catalog import CatalogReader
from mpintel.matching.models import CatalogMaterial, CatalogSnapshot, MaterialMatch

logger = logging.getLogger(__name__)


@dataclass
class _IndexedMaterial:
    material: CatalogMaterial
    keys: set[str]
    names: list[NormalizedDescription]


def _jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class MaterialMatcher:
    """Match descriptions against a catalog snapshot."""

    def __init__(
        self,
        catalog: CatalogReader,
        normalizer: DescriptionNormalizer | None = None,
        config: MatchingConfig | None = None,
    ):
        self.catalog = catalog
        self.config = config or get_config().matching
        self.normalizer = normalizer or get_normalizer(self.config.synonyms_path)
        self._indexed: CatalogSnapshot | None = None
        self._index: list[_IndexedMaterial] = []

    async def match(
        self, description: str | None, category_hint: UUID | str | None = None
    ) -> MaterialMatch | None:
        """Best acceptable match for one description, or None."""
        snapshot = await self.catalog.load_snapshot()
        return self.match_in_snapshot(snapshot, description, category_hint)

    def match_in_snapshot(
        self,
        snapshot: CatalogSnapshot,
        description: str | None,
        category_hint: UUID | str | None = None,
    ) -> MaterialMatch | None:
        """Match against an already loaded snapshot (batch callers)."""
        normalized = self.normalizer.normalize(description)
        if not normalized.text and not normalized.dimensions:
            return None

        index = self._index_snapshot(snapshot)
        candidates = index
        if category_hint is not None:
            wanted = {m.id for m in snapshot.in_category(category_hint)}
            if wanted:
                candidates = [c for c in index if c.material.id in wanted]

        if not candidates:
            return None

        description_key = self.normalizer.key(description)
        scored: list[tuple[float, str, CatalogMaterial]] = []
        for candidate in candidates:
            if description_key in candidate.keys:
                scored.append((1.0, "exact", candidate.material))
            else:
                score = self._fuzzy_score(normalized, candidate.names)
                scored.append((round(score, 4), "fuzzy", candidate.material))

        scored.sort(
            key=lambda s: (
                -s[0],
                -snapshot.popularity.get(s[2].id, 0),
                s[2].canonical_name,
                str(s[2].id),
            )
        )
        score, method, material = scored[0]

        if score < self.config.min_acceptance_score:
            logger.debug(
                "No match for %r (best %s at %.4f)",
                description,
                material.canonical_name,
                score,
            )
            return None

        return MaterialMatch(
            material_id=material.id,
            canonical_name=material.canonical_name,
            score=score,
            method=method,
        )

    def _fuzzy_score(
        self, description: NormalizedDescription, names: list[NormalizedDescription]
    ) -> float:
        best = 0.0
        for name in names:
            base = 0.5 * _jaccard(description.tokens, name.tokens) + 0.5 * (
                fuzz.token_sort_ratio(description.text, name.text) / 100.0
            )
            agreement = dimensions_agree(description.dimensions, name.dimensions)
            if agreement is True:
                base = min(1.0, base + self.config.dimension_bonus)
            elif agreement is False:
                base *= self.config.dimension_conflict_factor
            best = max(best, base)
        return best

    def _index_snapshot(self, snapshot: CatalogSnapshot) -> list[_IndexedMaterial]:
        if self._indexed is snapshot:
            return self._index

        index = []
        for material in snapshot.materials:
            raw_names = [material.canonical_name, *material.synonyms, *material.aliases]
            index.append(
                _IndexedMaterial(
                    material=material,
                    keys={self.normalizer.key(n) for n in raw_names if n},
                    names=[self.normalizer.normalize(n) for n in raw_names if n],
                )
            )
        self._indexed = snapshot
        self._index = index
        return index
