"""Tests for auth: password hashing, bearer tokens and header parsing."""

import json

import pytest
from cryptography.fernet import Fernet

import auth
from errors import Unauthorized
from schemas import Principal

ALICE = Principal(id=7, username="alice", email="alice@example.com")


def test_hash_and_verify_password():
    stored = auth.hash_password("s3cret")
    assert stored.startswith("pbkdf2_sha256$1000$")
    assert auth.verify_password("s3cret", stored)
    assert not auth.verify_password("wrong", stored)


def test_hashes_are_salted():
    assert auth.hash_password("same") != auth.hash_password("same")


@pytest.mark.parametrize("stored", ["", "plain", "md5$1$a$b", "pbkdf2_sha256$x$y$z"])
def test_verify_password_rejects_malformed_hash(stored):
    assert auth.verify_password("anything", stored) is False


def test_token_round_trip():
    assert auth.verify_token(auth.issue_token(ALICE)) == ALICE


@pytest.mark.parametrize("token", [None, "", "   "])
def test_missing_token(token):
    with pytest.raises(Unauthorized, match="missing"):
        auth.verify_token(token)


def test_tampered_token():
    token = auth.issue_token(ALICE)
    with pytest.raises(Unauthorized, match="Invalid or expired"):
        auth.verify_token(token[:-4] + "AAAA")


def test_token_signed_with_other_key():
    foreign = Fernet(Fernet.generate_key()).encrypt(json.dumps(ALICE.model_dump()).encode()).decode()
    with pytest.raises(Unauthorized):
        auth.verify_token(foreign)


def test_token_without_principal_fields():
    token = auth._get_fernet().encrypt(b'{"id": 1}').decode()
    with pytest.raises(Unauthorized):
        auth.verify_token(token)


def test_expired_token(monkeypatch):
    token = auth.issue_token(ALICE)
    monkeypatch.setattr(auth, "TOKEN_TTL_SECONDS", -1)
    with pytest.raises(Unauthorized, match="Invalid or expired"):
        auth.verify_token(token)


def test_missing_key_raises_runtime_error(monkeypatch):
    monkeypatch.delenv("TASKS_TOKEN_KEY")
    monkeypatch.setattr(auth, "_fernet", None)
    with pytest.raises(RuntimeError, match="TASKS_TOKEN_KEY"):
        auth.issue_token(ALICE)


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc", "abc"),
        ("bearer  abc ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        ("", None),
        (None, None),
    ],
)
def test_bearer_token(header, expected):
    assert auth.bearer_token(header) == expected
