"""Models package for the poster sync application."""

from .location import Location
from .poster_delta import PosterDelta
from .poster_record import PosterRecord
from .session import Session

__all__ = ['Location', 'PosterDelta', 'PosterRecord', 'Session']
