"""Tests for fingerprint resolution and JWT signing."""

import base64
import hashlib
import json
import re
import time

import jwt
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding

from sqlgateway.auth.credentials import Credentials
from sqlgateway.auth.keypair_auth import SnowflakeKeyPair
from sqlgateway.errors import KeyDecodeError

BASE64URL_SEGMENT = re.compile(r"^[A-Za-z0-9_-]+$")


def _b64url_decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def _expected_fingerprint(private_key) -> str:
    spki = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return "SHA256:" + base64.b64encode(hashlib.sha256(spki).digest()).decode()


def test_derived_fingerprint_matches_spki_digest(credentials, private_key):
    keypair = SnowflakeKeyPair(credentials)

    fingerprint = keypair.resolve_fingerprint()

    assert fingerprint == _expected_fingerprint(private_key)
    assert keypair.fingerprint_derived is True
    # 32-byte digest in standard base64 is 44 chars with one pad
    assert len(fingerprint) == len("SHA256:") + 44
    assert fingerprint.endswith("=")


def test_derived_fingerprint_is_deterministic(credentials):
    fingerprints = {SnowflakeKeyPair(credentials).resolve_fingerprint() for _ in range(5)}

    assert len(fingerprints) == 1


def test_configured_fingerprint_used_verbatim(credentials):
    configured = credentials.model_copy(update={"public_key_fingerprint": "SHA256:registered+/x="})
    keypair = SnowflakeKeyPair(configured)

    assert keypair.resolve_fingerprint() == "SHA256:registered+/x="
    assert keypair.fingerprint_derived is False


def test_configured_fingerprint_without_prefix_warns(credentials, log_messages):
    keypair = SnowflakeKeyPair(credentials.model_copy(update={"public_key_fingerprint": "abc="}))

    assert keypair.resolve_fingerprint() == "abc="
    assert any("does not start with 'SHA256:'" in m for m in log_messages)


@pytest.mark.parametrize(
    "account,user",
    [
        ("myorg-acct", "svc_user"),
        ("XY12345", "Jane.Doe"),
        ("org-Account_1", "etl"),
    ],
)
def test_issuer_and_subject_are_upper_cased(private_key_der, private_key, account, user):
    creds = Credentials(account=account, user=user, private_key_der=private_key_der)

    claims = jwt.decode(
        SnowflakeKeyPair(creds).create_jwt_token(),
        options={"verify_signature": False},
    )

    qualified = f"{account.upper()}.{user.upper()}"
    assert claims["sub"] == qualified
    assert claims["iss"] == f"{qualified}.{_expected_fingerprint(private_key)}"


def test_issuer_embeds_configured_fingerprint(credentials):
    creds = credentials.model_copy(update={"public_key_fingerprint": "SHA256:preset="})

    claims = jwt.decode(
        SnowflakeKeyPair(creds).create_jwt_token(), options={"verify_signature": False}
    )

    assert claims["iss"] == "MYORG-ACCT.SVC_USER.SHA256:preset="


def test_token_lifetime_is_one_hour(credentials):
    claims = jwt.decode(
        SnowflakeKeyPair(credentials).create_jwt_token(now=1_700_000_000),
        options={"verify_signature": False},
    )

    assert claims["iat"] == 1_700_000_000
    assert claims["exp"] - claims["iat"] == 3600


def test_header_is_rs256_jwt(credentials):
    token = SnowflakeKeyPair(credentials).create_jwt_token()

    header = json.loads(_b64url_decode(token.split(".")[0]))
    assert header == {"alg": "RS256", "typ": "JWT"}


def test_segments_are_unpadded_base64url(credentials):
    token = SnowflakeKeyPair(credentials).create_jwt_token()

    segments = token.split(".")
    assert len(segments) == 3
    for segment in segments:
        assert BASE64URL_SEGMENT.match(segment)
        assert "+" not in segment and "/" not in segment and "=" not in segment


def test_signature_is_pkcs1v15_sha256(credentials, private_key):
    token = SnowflakeKeyPair(credentials).create_jwt_token()
    signing_input, _, signature = token.rpartition(".")

    # raises InvalidSignature on mismatch
    private_key.public_key().verify(
        _b64url_decode(signature),
        signing_input.encode("utf-8"),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )


def test_token_verifies_with_public_key(credentials, private_key):
    token = SnowflakeKeyPair(credentials).create_jwt_token(now=int(time.time()))

    claims = jwt.decode(token, private_key.public_key(), algorithms=["RS256"])

    assert claims["sub"] == "MYORG-ACCT.SVC_USER"


def test_each_call_mints_a_new_token(credentials):
    keypair = SnowflakeKeyPair(credentials)

    assert keypair.create_jwt_token(now=1_700_000_000) != keypair.create_jwt_token(now=1_700_000_060)


def test_auth_headers_keep_token_verbatim(credentials):
    token = "eyJ-a_b.c-d_e-f.-g_h-"

    headers = SnowflakeKeyPair(credentials).get_auth_headers(token)

    assert headers["Authorization"] == f"Bearer {token}"
    assert headers["X-Snowflake-Authorization-Token-Type"] == "KEYPAIR_JWT"


def test_auth_headers_carry_signed_token_untouched(credentials, monkeypatch):
    keypair = SnowflakeKeyPair(credentials)
    monkeypatch.setattr(keypair, "create_jwt_token", lambda: "aa-bb.cc-dd.ee-ff")

    assert keypair.get_auth_headers()["Authorization"] == "Bearer aa-bb.cc-dd.ee-ff"


def test_issuer_is_logged(credentials, log_messages):
    SnowflakeKeyPair(credentials).create_jwt_token()

    assert any(m.startswith("Built JWT with issuer MYORG-ACCT.SVC_USER.SHA256:") for m in log_messages)
    assert any("Fingerprint source: derived" in m for m in log_messages)


def test_public_key_pem_has_no_armor(credentials):
    pem = SnowflakeKeyPair(credentials).get_public_key_pem()

    assert "BEGIN" not in pem and "\n" not in pem
    assert base64.b64decode(pem)


def test_garbage_der_is_key_decode_error(credentials):
    bad = credentials.model_copy(update={"private_key_der": b"\x30\x03not-a-key"})

    with pytest.raises(KeyDecodeError):
        SnowflakeKeyPair(bad).create_jwt_token()


def test_non_rsa_key_is_key_decode_error(credentials):
    ec_der = ec.generate_private_key(ec.SECP256R1()).private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )

    with pytest.raises(KeyDecodeError, match="RSA"):
        SnowflakeKeyPair(credentials.model_copy(update={"private_key_der": ec_der})).load_private_key()


def test_encrypted_key_is_key_decode_error(credentials, private_key):
    encrypted_der = private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(b"secret"),
    )

    with pytest.raises(KeyDecodeError, match="unencrypted"):
        SnowflakeKeyPair(
            credentials.model_copy(update={"private_key_der": encrypted_der})
        ).load_private_key()


def test_pkcs1_der_is_key_decode_error(credentials, private_key):
    pkcs1_der = private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )

    with pytest.raises(KeyDecodeError, match="not PKCS#8"):
        SnowflakeKeyPair(
            credentials.model_copy(update={"private_key_der": pkcs1_der})
        ).create_jwt_token()
