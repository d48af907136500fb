from .client import PortalSession, SessionSetupError, WorklistPortalClient, parse_count
from .selectors import PortalSelectors

__all__ = [
    "PortalSelectors",
    "PortalSession",
    "SessionSetupError",
    "WorklistPortalClient",
    "parse_count",
]
