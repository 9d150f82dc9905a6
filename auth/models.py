"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Registries and
the authorization server do the work.

Every model is flat so it round-trips through dataclasses.asdict() and the
JSON codecs in cache/store.py.

Layer rule: no imports from api/, web/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class UserState(str, Enum):
    active = "active"
    inactive = "inactive"


@dataclass
class Client:
    """A registered OAuth client application.

    endpoints is the list of approved redirect URIs. A redirect_uri presented
    at /authorize must match one of them exactly.
    """

    id: str
    name: str = ""
    endpoints: list[str] = field(default_factory=list)


@dataclass
class User:
    """A user record. username is the registry key.

    password holds either a bcrypt hash or a plaintext secret, depending on
    which PasswordChecker the deployment chains in. Only active users may
    authenticate by any mechanism.
    """

    username: str
    id: int = 0
    password: str = ""
    email: str = ""
    name: str = ""
    state: UserState = UserState.active

    def __post_init__(self) -> None:
        self.state = UserState(self.state)

    @property
    def is_active(self) -> bool:
        return self.state == UserState.active

    def to_public_dict(self) -> dict:
        """User info safe to return to the user themselves (no password)."""
        return {
            "id": self.id,
            "username": self.username,
            "login": self.username,
            "email": self.email,
            "name": self.name,
        }


@dataclass
class PendingAuthorization:
    """An authorization request moving through authorize -> approve -> token.

    id is the correlation id while the request waits for approval, and the
    authorization code once approved. username is empty until approval.
    """

    id: str = ""
    application_name: str = ""
    response_type: str = ""
    client_id: str = ""
    redirect_uri: str = ""
    state: str = ""
    username: str = ""
