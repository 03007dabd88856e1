"""
Network Status Protocol
Online/offline capability injected into the real-time manager.
"""

from typing import Callable, Protocol
from abc import abstractmethod

NetworkChangeHandler = Callable[[bool], None]


class NetworkStatusProvider(Protocol):
    """Protocol for platform-level connectivity signals."""

    @abstractmethod
    def is_online(self) -> bool:
        """Synchronous online flag."""
        ...

    @abstractmethod
    def on_change(self, handler: NetworkChangeHandler) -> Callable[[], None]:
        """Register a change handler; returns a function that detaches it."""
        ...
