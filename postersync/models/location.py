from dataclasses import dataclass


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    def to_dict(self) -> dict:
        return {"lat": self.latitude, "lng": self.longitude}

    @classmethod
    def from_dict(cls, data: dict) -> 'Location':
        return cls(latitude=float(data["lat"]), longitude=float(data["lng"]))
