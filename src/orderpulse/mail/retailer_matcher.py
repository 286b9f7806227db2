"""Sender address → known retailer, via a cached domain table."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable
from uuid import UUID

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetailerPattern:
    retailer_id: UUID
    name: str
    domains: frozenset[str]


PatternLoader = Callable[[], Awaitable[Iterable[RetailerPattern]]]


def sender_domain(address: str | None) -> str | None:
    """Lower-cased domain after the ``@`` of *address*."""
    if not address or "@" not in address:
        return None
    domain = address.rsplit("@", 1)[1].strip().strip(">").lower()
    return domain or None


class RetailerMatcher:
    """Read-through cache over the retailer domain table.

    The table is loaded on first use and then only when ``refresh()`` is
    called; ``invalidate()`` drops it so the next match reloads.
    """

    def __init__(self, loader: PatternLoader):
        self._loader = loader
        self._patterns: list[RetailerPattern] | None = None

    async def refresh(self) -> None:
        self._patterns = list(await self._loader())
        logger.info("retailer_patterns_loaded", count=len(self._patterns))

    def invalidate(self) -> None:
        self._patterns = None

    @property
    def loaded(self) -> bool:
        return self._patterns is not None

    async def match(
        self, from_address: str | None, original_from_address: str | None = None
    ) -> RetailerPattern | None:
        """Match the direct sender first, then the forwarded original sender."""
        if self._patterns is None:
            await self.refresh()
        found = self._match_domain(sender_domain(from_address))
        if found is None and original_from_address:
            found = self._match_domain(sender_domain(original_from_address))
        return found

    def _match_domain(self, domain: str | None) -> RetailerPattern | None:
        if not domain:
            return None
        patterns = self._patterns or []
        for pattern in patterns:
            if domain in pattern.domains:
                return pattern
        for pattern in patterns:
            if any(domain.endswith("." + d) for d in pattern.domains):
                return pattern
        return None
