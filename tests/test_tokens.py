from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from framecraft_identity.config import get_settings
from framecraft_identity.domain.account import Account
from framecraft_identity.domain.credentials import CredentialState, RefreshCredential
from framecraft_identity.security.passwords import PasswordVerifier
from framecraft_identity.security.tokens import (
    AccessClaims,
    decode_access_token,
    generate_refresh_token,
    hash_refresh_token,
    issue_access_token,
)


def _account(**overrides) -> Account:
    values = {
        "account_id": "acc-1",
        "tenant_id": "tenant-1",
        "email": "ann@example.com",
        "display_name": "Ann",
        "password_hash": "unused",
        "created_at": datetime.now(timezone.utc),
    }
    values.update(overrides)
    return Account(**values)


def test_access_token_round_trips_claims():
    token, expires_at = issue_access_token(account=_account(), roles=["editor"])

    payload = decode_access_token(token)
    claims = AccessClaims.from_payload(payload)

    settings = get_settings()
    assert payload["iss"] == settings.jwt_issuer
    assert payload["aud"] == settings.jwt_audience
    assert claims.account_id == "acc-1"
    assert claims.tenant_id == "tenant-1"
    assert claims.roles == ("editor",)
    assert int(expires_at.timestamp()) == payload["exp"]


def test_privileged_account_without_tenant():
    token, _ = issue_access_token(account=_account(tenant_id=None, is_privileged=True), roles=[])

    claims = AccessClaims.from_payload(decode_access_token(token))

    assert claims.tenant_id is None
    assert claims.is_privileged is True


def test_decode_rejects_foreign_audience_and_tampering():
    settings = get_settings()
    now = datetime.now(timezone.utc)
    foreign = jwt.encode(
        {
            "sub": "acc-1",
            "iss": settings.jwt_issuer,
            "aud": "someone-else",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=5)).timestamp()),
        },
        settings.jwt_secret,
        algorithm="HS256",
    )
    token, _ = issue_access_token(account=_account(), roles=[])
    header, _, signature = token.split(".")
    forged = ".".join([header, foreign.split(".")[1], signature])

    with pytest.raises(jwt.InvalidAudienceError):
        decode_access_token(foreign)
    with pytest.raises(jwt.InvalidSignatureError):
        decode_access_token(forged)


def test_refresh_tokens_are_random_and_hashed():
    token, digest = generate_refresh_token()
    other, _ = generate_refresh_token()

    assert token != other
    assert digest == hash_refresh_token(token)
    assert len(digest) == 64


def test_credential_states():
    now = datetime.now(timezone.utc)
    credential = RefreshCredential(
        credential_id="c1",
        account_id="acc-1",
        token_hash="h",
        expires_at=now + timedelta(days=1),
        created_at=now,
    )
    assert credential.state(now) is CredentialState.active
    assert credential.state(now + timedelta(days=2)) is CredentialState.expired

    credential.is_revoked = True
    assert credential.state(now) is CredentialState.manually_revoked
    credential.replaced_by_id = "c2"
    assert credential.state(now + timedelta(days=2)) is CredentialState.rotated_out


def test_password_verifier_applies_pepper(passwords):
    peppered = PasswordVerifier(pepper="pepper", time_cost=1, memory_cost=1024, parallelism=1)
    stored = peppered.hash("s3cret!")

    assert stored.startswith("$argon2id$")
    assert peppered.verify("s3cret!", stored)
    assert not peppered.verify("wrong", stored)
    assert not passwords.verify("s3cret!", stored)
    assert not passwords.verify("s3cret!", "not-a-hash")


def test_password_verifier_rejects_empty_and_flags_weak_hashes(passwords):
    with pytest.raises(ValueError):
        passwords.hash("")

    stronger = PasswordVerifier(time_cost=2, memory_cost=2048, parallelism=1)
    assert stronger.needs_rehash(passwords.hash("s3cret!"))
    assert not passwords.needs_rehash(passwords.hash("s3cret!"))
