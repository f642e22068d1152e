"""Heuristic completeness scoring for stage data.

A stage declares weighted data categories; each category lists the keys that
satisfy it. The score is the fraction of total weight whose categories hold
at least one non-empty value.
"""

import logging
from typing import Any, Iterable, List, Mapping

from pagegen.config import CategorySettings
from pagegen.constants import COLLECTION_PROGRESS_CAP

logger = logging.getLogger(__name__)

# Progress shown during collection: a base plus fixed credit per category
PROGRESS_BASE = 30
PROGRESS_WEIGHTS = {
    "identity": 20,
    "skills": 15,
    "achievements": 15,
    "values": 10,
    "goals": 10,
}


def has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


class CompletenessScorer:
    def __init__(self, categories: Iterable[CategorySettings]):
        self.categories: List[CategorySettings] = list(categories)

    @property
    def total_weight(self) -> float:
        return sum(max(c.weight, 0) for c in self.categories)

    def present(self, data: Mapping[str, Any]) -> List[str]:
        """Names of the categories satisfied by ``data``."""
        return [
            category.name
            for category in self.categories
            if any(has_value(data.get(key)) for key in (category.keys or [category.name]))
        ]

    def score(self, data: Mapping[str, Any]) -> float:
        """Score in [0, 1]. Any error while scoring counts as no progress."""
        try:
            total = self.total_weight
            if total <= 0:
                return 0.0
            present = set(self.present(data))
            earned = sum(max(c.weight, 0) for c in self.categories if c.name in present)
            return min(max(earned / total, 0.0), 1.0)
        except Exception as e:
            logger.warning(f"Completeness scoring failed, treating as 0: {e}")
            return 0.0


def collection_progress(present: Iterable[str], complete: bool = False) -> int:
    """Percentage shown to the user while collecting. Reaches 100 only on completion."""
    if complete:
        return 100
    progress = PROGRESS_BASE + sum(PROGRESS_WEIGHTS.get(name, 0) for name in set(present))
    return min(progress, COLLECTION_PROGRESS_CAP)
