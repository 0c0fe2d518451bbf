"""Candidate list handed to the external picker."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from gls.db.store import CacheStore
from gls.models import PickCandidate

logger = logging.getLogger("gls.selection")


@dataclass
class Selection:
    candidates: list[PickCandidate]
    contexts: list[str] = field(default_factory=list)
    initial_query: Optional[str] = None

    def as_picker_lines(self) -> list[str]:
        return [c.picker_line() for c in self.candidates]

    def find(self, full_path: str) -> Optional[PickCandidate]:
        return next((c for c in self.candidates if c.full_path == full_path), None)


class SelectionView:
    """Ordered, optionally prefix-filtered view of the cached projects.

    Prefix matching is on the raw full_path string, so "acme/back" matches
    "acme/backend/api". Ranking beyond full_path order is left to the picker.
    """

    def __init__(self, store: CacheStore):
        self.store = store

    async def list(self, context_prefixes: Sequence[str] | None = None) -> list[PickCandidate]:
        prefixes = [p for p in (context_prefixes or []) if p]
        candidates = await self.store.list_candidates(prefixes or None)
        if prefixes:
            logger.debug("Found %s projects matching contexts: %s", len(candidates), ", ".join(prefixes))
        return candidates

    async def build(
        self,
        context_prefixes: Sequence[str] | None = None,
        initial_query: Optional[str] = None,
    ) -> Selection:
        contexts = [p for p in (context_prefixes or []) if p]
        candidates = await self.list(contexts)
        if not candidates:
            if contexts:
                logger.warning("No projects found matching context prefixes: %s", ", ".join(contexts))
            else:
                logger.warning("No projects available in cache.")
        return Selection(candidates=candidates, contexts=contexts, initial_query=initial_query or None)
