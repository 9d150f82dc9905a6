"""Unit tests for auth/tokencache.py -- the bidirectional token <-> owner index.

Covers:
- put/get round trip and the forward token list
- several tokens per owner
- delete() removes from both indices and is idempotent
- an expired token is evicted from both indices: Expired, then NotFound
- a live reverse entry missing from its owner's list is re-listed, not revoked
- concurrent puts for one owner keep every token in the forward list
- put prunes expired and deleted tokens from the forward list
- non-str tokens raise InvalidValueType
"""

import threading
import time
from datetime import timedelta

import pytest

from auth.tokencache import TokenCache
from cache.store import STRING_CODEC, STRING_LIST_CODEC, Expired, InvalidValueType, MemoryCache, NotFound


class _SlowCache(MemoryCache):
    """Widens the read-modify-write window on the forward list."""

    def _read(self, key):
        result = super()._read(key)
        time.sleep(0.05)
        return result


@pytest.fixture
def tokens(clock):
    return TokenCache(
        MemoryCache(STRING_LIST_CODEC, clock=clock),
        MemoryCache(STRING_CODEC, clock=clock),
    )


def test_put_then_get_returns_owner(tokens):
    tokens.put("alice", "t1")
    assert tokens.get("t1") == "alice"
    assert tokens.tokens("alice") == ["t1"]


def test_owner_holds_many_tokens(tokens):
    tokens.put("alice", "t1")
    tokens.put("alice", "t2")
    tokens.put("bob", "t3")
    assert tokens.tokens("alice") == ["t1", "t2"]
    assert tokens.get("t2") == "alice"
    assert tokens.get("t3") == "bob"


def test_put_same_token_twice_lists_it_once(tokens):
    tokens.put("alice", "t1")
    tokens.put("alice", "t1")
    assert tokens.tokens("alice") == ["t1"]


def test_unknown_token_not_found(tokens):
    with pytest.raises(NotFound):
        tokens.get("nope")


def test_tokens_for_unknown_owner_is_empty(tokens):
    assert tokens.tokens("nobody") == []


def test_delete_removes_both_directions(tokens):
    tokens.put("alice", "t1")
    tokens.put("alice", "t2")
    tokens.delete("t1")
    with pytest.raises(NotFound):
        tokens.get("t1")
    assert tokens.tokens("alice") == ["t2"]


def test_delete_last_token_drops_owner(tokens):
    tokens.put("alice", "t1")
    tokens.delete("t1")
    assert tokens.tokens("alice") == []
    assert tokens.owner_tokens.keys() == []


def test_delete_is_idempotent(tokens):
    tokens.put("alice", "t1")
    tokens.delete("t1")
    tokens.delete("t1")
    tokens.delete("never-existed")


def test_expired_token_evicted_from_both_indices(tokens, clock):
    tokens.put_until(clock() + timedelta(minutes=1), "alice", "t1")
    tokens.put("alice", "t2")
    clock.advance(minutes=2)
    with pytest.raises(Expired):
        tokens.get("t1")
    with pytest.raises(NotFound):
        tokens.get("t1")
    assert tokens.tokens("alice") == ["t2"]


def test_unlisted_reverse_entry_is_relisted(tokens):
    """A forward list that lost an update does not revoke a live token."""
    tokens.put("alice", "t1")
    tokens.put("alice", "t2")
    tokens.owner_tokens.put("alice", ["t2"])
    assert tokens.get("t1") == "alice"
    assert tokens.tokens("alice") == ["t2", "t1"]


def test_concurrent_puts_for_one_owner_keep_every_token(clock):
    tokens = TokenCache(_SlowCache(STRING_LIST_CODEC, clock=clock), MemoryCache(STRING_CODEC, clock=clock))
    tokens.put("alice", "t0")
    barrier = threading.Barrier(2)

    def writer(token):
        barrier.wait()
        tokens.put("alice", token)

    threads = [threading.Thread(target=writer, args=(t,)) for t in ("tA", "tB")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(tokens.tokens("alice")) == ["t0", "tA", "tB"]
    assert {t: tokens.get(t) for t in ("tA", "tB")} == {"tA": "alice", "tB": "alice"}


def test_put_prunes_dead_tokens_from_owner_list(tokens, clock):
    tokens.put_until(clock() + timedelta(minutes=1), "alice", "old")
    tokens.put("alice", "gone")
    tokens.token_owners.delete("gone")
    clock.advance(minutes=2)
    tokens.put("alice", "new")
    assert tokens.tokens("alice") == ["new"]
    assert tokens.token_owners.keys() == ["new"]


def test_non_str_token_rejected(tokens):
    with pytest.raises(InvalidValueType):
        tokens.put("alice", 12345)
    with pytest.raises(TypeError):
        tokens.put_until(tokens.token_owners.now(), "alice", b"bytes")
    assert tokens.tokens("alice") == []
