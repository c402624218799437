"""
Offer scope.

Coupons may be limited to a vendor and/or a plan. Stored values are
either NULL (global) or an identifier; legacy rows may still hold one of
the wildcard tokens below, which are read as global.
"""

from dataclasses import dataclass
from typing import Optional, Union, Iterable


LEGACY_GLOBAL_TOKENS = frozenset({"ANY", "ALL", "GLOBAL", "NULL", "NONE"})


@dataclass(frozen=True)
class GlobalScope:
    """Applies to every vendor/plan."""

    def matches(self, candidates: Iterable[Optional[str]]) -> bool:
        return True

    def to_storage(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class SpecificScope:
    """Applies only when one of the candidate identifiers equals value."""
    value: str

    def matches(self, candidates: Iterable[Optional[str]]) -> bool:
        target = self.value.strip().lower()
        return any(
            str(candidate).strip().lower() == target
            for candidate in candidates
            if candidate is not None and str(candidate).strip()
        )

    def to_storage(self) -> Optional[str]:
        return self.value


Scope = Union[GlobalScope, SpecificScope]


def parse_scope(raw: Optional[str]) -> Scope:
    """Read a stored scope value."""
    value = str(raw or "").strip()
    if not value or value.upper() in LEGACY_GLOBAL_TOKENS:
        return GlobalScope()
    return SpecificScope(value)
