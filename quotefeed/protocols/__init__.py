"""
Protocols
Lightweight Protocols for interface clarity and decoupling.
"""

from .quote_source import QuoteSource
from .network_status import NetworkStatusProvider, NetworkChangeHandler

__all__ = [
    "QuoteSource",
    "NetworkStatusProvider",
    "NetworkChangeHandler",
]
