from dataclasses import dataclass
from typing import Optional

from .location import Location


@dataclass
class PosterRecord:
    """A poster as the device currently believes it to be, including unsent edits."""
    latitude: float
    longitude: float
    local_id: Optional[int] = None
    server_id: Optional[int] = None
    removed: bool = False
    pending_sync: bool = True
    attempts: int = 0
    last_error: Optional[str] = None

    @property
    def location(self) -> Location:
        return Location(self.latitude, self.longitude)

    @classmethod
    def pending_placement(cls, location: Location) -> 'PosterRecord':
        return cls(latitude=location.latitude, longitude=location.longitude)

    @classmethod
    def pending_removal(cls, location: Location) -> 'PosterRecord':
        return cls(latitude=location.latitude, longitude=location.longitude, removed=True)
