from dataclasses import dataclass

from .location import Location


@dataclass(frozen=True)
class PosterDelta:
    server_id: int
    location: Location
    removed: bool = False
