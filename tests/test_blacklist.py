"""Unit tests for the in-memory token blacklist and invalidate_token().

Covers:
- add / contains / purge_expired / len
- invalidate_token() blacklists until the JWT's own exp
- Tokens without exp (magic links) and malformed tokens are refused
"""

import os
import time

os.environ.setdefault("DEBUG", "true")

from jose import jwt

from auth.models import ROLE_USER
from auth.tokens import create_caretaker_token, create_magic_link_token, invalidate_token
from cache.blacklist import TokenBlacklist


def test_add_and_contains():
    blacklist = TokenBlacklist()
    assert not blacklist.contains("abc")
    blacklist.add("abc", time.time() + 60)
    assert blacklist.contains("abc")
    assert len(blacklist) == 1


def test_purge_expired_removes_only_expired_entries():
    blacklist = TokenBlacklist()
    blacklist.add("old", 1000.0)
    blacklist.add("new", 3000.0)
    assert blacklist.purge_expired(now=2000.0) == 1
    assert not blacklist.contains("old")
    assert blacklist.contains("new")
    assert blacklist.purge_expired(now=2000.0) == 0


def test_invalidate_token_uses_token_exp():
    blacklist = TokenBlacklist()
    token = create_caretaker_token("c1", "Alex", "Parent", ROLE_USER, "f1", "home", expire_seconds=600)
    assert invalidate_token(blacklist, token) is True
    assert blacklist.contains(token)

    exp = jwt.get_unverified_claims(token)["exp"]
    assert blacklist.purge_expired(now=exp - 1) == 0
    assert blacklist.purge_expired(now=exp + 1) == 1


def test_token_without_exp_cannot_be_blacklisted():
    blacklist = TokenBlacklist()
    token = create_magic_link_token("dt1", "c1", "Kitchen", None, ROLE_USER, "f1", "home")
    assert "exp" not in jwt.get_unverified_claims(token)
    assert invalidate_token(blacklist, token) is False
    assert len(blacklist) == 0


def test_malformed_token_is_refused():
    blacklist = TokenBlacklist()
    assert invalidate_token(blacklist, "not-a-jwt") is False
    assert len(blacklist) == 0
