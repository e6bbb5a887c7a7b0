"""
================================================================================
MangaLink v1.0 - Mapping Domain Types
================================================================================
Plain value types shared by the store, the resolution policy and the
discovery manager.

MAPPING VALUES:
    str    -> concrete slug on the target platform
    False  -> negative marker: a search ran and nothing matched
    None   -> absent (never searched, expired, or deleted)
================================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Literal, Optional, Union

NEGATIVE: Literal[False] = False

MappingValue = Union[str, Literal[False]]


def is_concrete(value: Optional[MappingValue]) -> bool:
    """True for a real slug (not negative, not absent)."""
    return isinstance(value, str) and value != ""


class Tier(str, Enum):
    """Which partition a resolved mapping came from."""
    MANUAL = "manual"
    AUTO = "auto"
    NONE = "none"


@dataclass(frozen=True)
class WorkIdentity:
    """A work as identified on one platform."""
    platform: str
    slug: str

    def __str__(self) -> str:
        return f"{self.platform}/{self.slug}"


@dataclass(frozen=True)
class Resolution:
    """Outcome of the manual -> auto -> none lookup."""
    value: Optional[MappingValue]
    tier: Tier

    @property
    def slug(self) -> Optional[str]:
        return self.value if is_concrete(self.value) else None

    @property
    def is_negative(self) -> bool:
        return self.tier == Tier.AUTO and self.value is NEGATIVE

    @property
    def needs_discovery(self) -> bool:
        return self.tier == Tier.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "tier": self.tier.value}


@dataclass
class MetricsEntry:
    """Unit counts cached for one target work."""
    available_units: float
    consumed_units: float
    expires: Optional[float] = None

    def __post_init__(self):
        self.available_units = max(0.0, float(self.available_units))
        self.consumed_units = min(max(0.0, float(self.consumed_units)), self.available_units)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available_units": self.available_units,
            "consumed_units": self.consumed_units,
            "expires": self.expires,
        }
