"""
yearsync - Year listening history reconciliation.

Keeps the local record of episodes played during a year in step with the
server, pulling history only when the server knows about more plays.
"""

from .client import YearSync
from .session import ReconciliationSession

try:
    from importlib.metadata import version

    __version__ = version("yearsync")
except Exception:
    __version__ = "0.0.0"

__all__ = ["YearSync", "ReconciliationSession"]
