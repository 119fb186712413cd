from dataclasses import dataclass, field


@dataclass(frozen=True)
class Session:
    """Authenticated user context passed explicitly into every sync and remote call."""
    auth_key: str = field(repr=False)
    user_id: int
    party_id: int
    username: str = ""
    party_name: str = ""
