"""
WaniKani Cache

Local cache and sync layer for the WaniKani API, with streaming batch
detail fetches and filtered exports.
"""

from . import db
from . import freshness
from . import client
from . import sync
from . import export
from . import plugin

__version__ = "0.1.0"
__all__ = ["db", "freshness", "client", "sync", "export", "plugin"]
