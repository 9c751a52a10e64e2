"""Access token, worker secret, and webhook signature tests."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from src.dealflow.core.security import (
    compute_signature,
    create_access_token,
    verify_token,
    verify_webhook_signature,
    verify_worker_secret,
)


# ── Access Tokens ─────────────────────────────────────────────────────────────


def test_access_token_roundtrip(settings):
    """Issued tokens carry the owner id and the access type."""
    payload = verify_token(create_access_token({"sub": "owner-1", "name": "Dana"}))
    assert payload["sub"] == "owner-1"
    assert payload["name"] == "Dana"
    assert payload["type"] == "access"


def test_expired_token_rejected():
    token = create_access_token({"sub": "owner-1"}, expires_delta=timedelta(seconds=-1))
    with pytest.raises(HTTPException) as exc_info:
        verify_token(token)
    assert exc_info.value.status_code == 401


def test_wrong_type_rejected(settings):
    token = jwt.encode(
        {"sub": "owner-1", "type": "refresh"},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(HTTPException):
        verify_token(token)


def test_token_without_subject_rejected(settings):
    token = jwt.encode(
        {"type": "access"}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
    )
    with pytest.raises(HTTPException):
        verify_token(token)


def test_foreign_signature_rejected(settings):
    token = jwt.encode(
        {"sub": "owner-1", "type": "access"}, "another-key", algorithm=settings.JWT_ALGORITHM
    )
    with pytest.raises(HTTPException):
        verify_token(token)


# ── Worker Secret ─────────────────────────────────────────────────────────────


def test_worker_secret_accepted():
    assert verify_worker_secret("Bearer test-worker-secret") is True


@pytest.mark.parametrize(
    "header",
    [None, "", "test-worker-secret", "Bearer wrong", "Basic test-worker-secret"],
)
def test_worker_secret_rejected(header):
    assert verify_worker_secret(header) is False


def test_unset_worker_secret_rejects_everything(settings, monkeypatch):
    monkeypatch.setattr(settings, "WORKER_SECRET", "")
    assert verify_worker_secret("Bearer ") is False


# ── Webhook Signatures ────────────────────────────────────────────────────────


def test_signature_matches_hmac_sha256():
    body = b'{"meetingId":"m-1"}'
    digest = compute_signature(body, "secret")
    assert len(digest) == 64
    assert verify_webhook_signature(body, digest, "secret")
    assert verify_webhook_signature(body, digest.upper(), "secret")


def test_signature_over_modified_body_fails():
    digest = compute_signature(b"original", "secret")
    assert not verify_webhook_signature(b"tampered", digest, "secret")
    assert not verify_webhook_signature(b"original", digest, "other-secret")


def test_prefixed_signature():
    body = b"payload"
    digest = compute_signature(body, "secret")
    assert verify_webhook_signature(body, f"sha256={digest}", "secret", prefix="sha256=")
    assert not verify_webhook_signature(body, digest, "secret", prefix="sha256=")


def test_missing_signature_or_secret():
    assert not verify_webhook_signature(b"x", None, "secret")
    assert not verify_webhook_signature(b"x", "abc", "")
