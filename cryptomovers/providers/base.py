import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..types import MarketItem


@dataclass
class PageResult:
    """One page of raw upstream records."""

    records: List[Any] = field(default_factory=list)
    has_more: bool = True
    cursor: Optional[str] = None


@dataclass
class Coverage:
    """Raw records gathered by one refresh and whether coverage was complete."""

    records: List[Any] = field(default_factory=list)
    is_partial: bool = False
    units_requested: int = 0
    units_failed: int = 0


def to_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Coerce upstream numbers (including "$1,234.5" strings); non-finite → default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        if not cleaned:
            return default
        try:
            number = float(cleaned)
        except ValueError:
            return default
    else:
        return default
    if not math.isfinite(number):
        return default
    return number


def to_str(value: Any) -> Optional[str]:
    """Optional upstream string; anything that is not a non-empty string → None."""
    if isinstance(value, str) and value.strip():
        return value
    return None


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


class MarketSource(ABC):
    """Provider of raw market records for one dataset.

    ``collect`` performs the upstream calls; the remaining hooks are applied
    by the fetch pipeline in order: normalize → accept → refine → enrich.
    """

    name: str

    @abstractmethod
    async def collect(self, *, deep: bool = True) -> Coverage:
        """Fetch raw records. ``deep`` selects the full scan over the quick one."""
        pass

    @abstractmethod
    def normalize(self, record: Any) -> Optional[MarketItem]:
        """Map a raw record to an item; None when a required field is missing."""
        pass

    def accept(self, item: MarketItem) -> bool:
        """Numeric sanity filters applied after exclusions."""
        return True

    def refine(self, items: List[MarketItem]) -> List[MarketItem]:
        """Whole-set transformations such as de-duplication."""
        return items

    async def enrich(self, items: List[MarketItem]) -> List[MarketItem]:
        """Side-load auxiliary metadata. Must not raise for partial failures."""
        return items
