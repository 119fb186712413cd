"""
Abstract surface of the remote poster service consumed by the sync engine.
"""

from abc import ABC, abstractmethod
from typing import List

from models import Location, PosterDelta, Session


class RemoteService(ABC):
    """
    Transport-agnostic RPC surface.

    Implementations raise ``TransientNetworkError`` or ``RemoteRejectedError``
    (both ``RemoteServiceError``) instead of returning error values.
    """

    @abstractmethod
    def place(self, session: Session, location: Location) -> int:
        """Place a poster and return its server id."""

    @abstractmethod
    def remove(self, session: Session, location: Location) -> int:
        """Remove the party's poster nearest to ``location`` and return its server id."""

    @abstractmethod
    def fetch_updates_since(self, session: Session, since_ms: int) -> List[PosterDelta]:
        """Return every poster placed, moved or removed after ``since_ms``."""

    def is_available(self) -> bool:
        """Cheap reachability probe. Assumed reachable unless overridden."""
        return True

    def close(self) -> None:
        """Release any transport resources."""
