"""
auth/store.py -- Client and user registries over the Cache contract.

Pattern: Repository. ClientRegistry and UserRegistry own persistence for
their entity; route and checker code never touches a Cache directly.
Both registries hand out copies (the cache codecs decode a fresh object on
every get), so callers cannot mutate stored state by accident.

JSON import accepts either a list of records or a single record object.
Export writes an indented list ordered by key.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import IO

from auth.models import Client, User
from cache.store import Cache, Expired, NotFound

logger = logging.getLogger("authsvc.auth.store")


def _load_records(stream: IO[str]) -> list[dict]:
    data = json.load(stream)
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        return data
    raise ValueError(f"expected a JSON object or list, got {type(data).__name__}")


class ClientRegistry:
    """Registered OAuth client applications, keyed by client id."""

    def __init__(self, cache: Cache[Client]) -> None:
        self.cache = cache

    def get(self, client_id: str) -> Client:
        """Return the client. Raises cache.store.NotFound / Expired."""
        return self.cache.get(client_id)

    def verify_client(self, client_id: str) -> bool:
        """Return True if client_id is a registered client."""
        try:
            self.get(client_id)
        except (NotFound, Expired):
            return False
        return True

    def verify_redirect(self, client_id: str, redirect_uri: str) -> bool:
        """Return True if the client is registered and redirect_uri is one of its endpoints."""
        try:
            client = self.get(client_id)
        except (NotFound, Expired):
            return False
        return redirect_uri in client.endpoints

    def put(self, client: Client) -> None:
        self.cache.put(client.id, client)

    def delete(self, client_id: str) -> None:
        self.cache.delete(client_id)

    def load_from_json(self, stream: IO[str]) -> int:
        """Import clients from JSON. Returns the number of clients stored."""
        records = _load_records(stream)
        for record in records:
            self.put(Client(**record))
        logger.info("Loaded %d OAuth client(s)", len(records))
        return len(records)

    def save_to_json(self, stream: IO[str]) -> None:
        clients = [dataclasses.asdict(self.get(key)) for key in self.cache.keys()]
        json.dump(clients, stream, indent=2)


class UserRegistry:
    """Known users, keyed by username."""

    def __init__(self, cache: Cache[User]) -> None:
        self.cache = cache

    def get(self, username: str) -> User:
        """Return the user. Raises cache.store.NotFound / Expired."""
        return self.cache.get(username)

    def find_active(self, username: str) -> User | None:
        """Return the user if it exists and is active, else None."""
        if not username:
            return None
        try:
            user = self.get(username)
        except (NotFound, Expired) as exc:
            logger.debug("user lookup for %r failed: %s", username, exc.__class__.__name__)
            return None
        return user if user.is_active else None

    def put(self, user: User) -> None:
        self.cache.put(user.username, user)

    def delete(self, username: str) -> None:
        self.cache.delete(username)

    def load_from_json(self, stream: IO[str]) -> int:
        """Import users from JSON. Returns the number of users stored."""
        records = _load_records(stream)
        for record in records:
            self.put(User(**record))
        logger.info("Loaded %d user(s)", len(records))
        return len(records)

    def save_to_json(self, stream: IO[str]) -> None:
        users = [dataclasses.asdict(self.get(key)) for key in self.cache.keys()]
        json.dump(users, stream, indent=2)
