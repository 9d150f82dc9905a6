"""
auth/tokencache.py -- Bidirectional bearer-token index.

There is an n->1 relationship between tokens and an owner (a username or a
client id). TokenCache keeps two caches in step:

  forward  owner -> [token, ...]   (owner_tokens)
  reverse  token -> owner          (token_owners, carries the expiry)

The reverse entry is authoritative. No transaction spans the two caches, so
writes are ordered:
  put:    forward first, then reverse
  delete: reverse first, then forward
A live reverse entry whose owner does not list the token is the result of a
lost forward-list update (two writers on the same owner), so get() re-lists
it rather than revoking it. Puts and forward-list rewrites are serialized per
TokenCache instance, and each put prunes listed tokens whose reverse entry
is gone or expired.

Deleting a token that is already gone is not an error, so concurrent
exchange/delete races resolve idempotently.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Optional

from cache.store import Cache, Expired, InvalidValueType, NotFound

logger = logging.getLogger("authsvc.auth.tokencache")


class TokenCache:
    def __init__(self, owner_tokens: Cache[list], token_owners: Cache[str]) -> None:
        self.owner_tokens = owner_tokens
        self.token_owners = token_owners
        self._lock = threading.RLock()

    def put(self, owner: str, token: str) -> None:
        """Record token as owned by owner, with no expiry."""
        self._put(None, owner, token)

    def put_until(self, expire: datetime, owner: str, token: str) -> None:
        """Record token as owned by owner until `expire`."""
        self._put(expire, owner, token)

    def get(self, token: str) -> str:
        """Return the owner of token.

        Raises Expired (after evicting the token from both indices) if the
        token's expiry has passed, NotFound if it never existed or was deleted.
        """
        try:
            owner = self.token_owners.get(token)
        except Expired as exc:
            if isinstance(exc.value, str):
                self._remove_from_owner(exc.value, token)
            raise
        if token not in self.tokens(owner):
            logger.warning("Re-listing token missing from the forward index of %r", owner)
            self._add_to_owner(owner, token)
        return owner

    def delete(self, token: str) -> None:
        """Remove token from both indices. Absent tokens are ignored."""
        try:
            owner = self.token_owners.get(token)
        except Expired as exc:
            owner = exc.value
        except NotFound:
            return
        self.token_owners.discard(token)
        if isinstance(owner, str):
            self._remove_from_owner(owner, token)

    def tokens(self, owner: str) -> list[str]:
        """Return the tokens currently listed for owner (possibly empty)."""
        try:
            return list(self.owner_tokens.get(owner))
        except (NotFound, Expired):
            return []

    def _put(self, expire: Optional[datetime], owner: str, token: str) -> None:
        if not isinstance(token, str):
            raise InvalidValueType(f"TokenCache expects a str token, got {type(token).__name__}")
        with self._lock:
            self._add_to_owner(owner, token, prune=True)
            if expire is None:
                self.token_owners.put(token, owner)
            else:
                self.token_owners.put_until(expire, token, owner)

    def _is_live(self, owner: str, token: str) -> bool:
        try:
            return self.token_owners.get(token) == owner
        except (NotFound, Expired):
            return False

    def _add_to_owner(self, owner: str, token: str, prune: bool = False) -> None:
        with self._lock:
            tokens = self.tokens(owner)
            if prune:
                tokens = [t for t in tokens if self._is_live(owner, t)]
            if token not in tokens:
                tokens.append(token)
            self.owner_tokens.put(owner, tokens)

    def _remove_from_owner(self, owner: str, token: str) -> None:
        with self._lock:
            remaining = [t for t in self.tokens(owner) if t != token]
            if remaining:
                self.owner_tokens.put(owner, remaining)
            else:
                self.owner_tokens.discard(owner)
