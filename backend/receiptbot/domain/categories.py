from __future__ import annotations

import difflib
from abc import ABC, abstractmethod
from typing import Iterable


def normalize_category_name(name: str) -> str:
    """Trim and capitalise the first letter, leaving the rest untouched."""
    trimmed = " ".join(name.split())
    if not trimmed:
        return trimmed
    return trimmed[0].upper() + trimmed[1:]


def find_exact(name: str, candidates: Iterable[str]) -> str | None:
    wanted = name.strip().casefold()
    return next((candidate for candidate in candidates if candidate.casefold() == wanted), None)


class CategoryMatcher(ABC):
    """Strategy that picks the known category closest to a free-form name."""

    @abstractmethod
    def closest(self, name: str, candidates: list[str]) -> str | None:
        """Return the best candidate or ``None`` when nothing is close enough."""


class FuzzyCategoryMatcher(CategoryMatcher):
    """Exact, then containment, then ``difflib`` similarity."""

    def __init__(self, cutoff: float = 0.6) -> None:
        self.cutoff = cutoff

    def closest(self, name: str, candidates: list[str]) -> str | None:
        wanted = name.strip().casefold()
        if not wanted or not candidates:
            return None

        exact = find_exact(wanted, candidates)
        if exact:
            return exact

        for candidate in candidates:
            if wanted in candidate.casefold():
                return candidate
        for candidate in candidates:
            if candidate.casefold() in wanted:
                return candidate

        folded = {candidate.casefold(): candidate for candidate in candidates}
        matches = difflib.get_close_matches(wanted, list(folded), n=1, cutoff=self.cutoff)
        return folded[matches[0]] if matches else None
