"""Cross-platform identity mapping: resolution policy, session state, discovery."""

from .models import NEGATIVE, MappingValue, MetricsEntry, Resolution, Tier, WorkIdentity, is_concrete
from .policy import ResolutionPolicy, resolve_links
from .session import CancellationToken, NavigationSequencer, NavigationTicket, SessionState
from .manager import MappingManager, NoContextError, InvalidLinkError

__all__ = [
    "NEGATIVE", "MappingValue", "MetricsEntry", "Resolution", "Tier", "WorkIdentity", "is_concrete",
    "ResolutionPolicy", "resolve_links",
    "CancellationToken", "NavigationSequencer", "NavigationTicket", "SessionState",
    "MappingManager", "NoContextError", "InvalidLinkError",
]
