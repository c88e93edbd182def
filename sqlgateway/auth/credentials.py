import base64
import binascii
import os
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import load_pem_private_key
from pydantic import BaseModel, ConfigDict, Field

from sqlgateway.config.logging_config import logger
from sqlgateway.config.settings import Settings, settings as default_settings
from sqlgateway.errors import ConfigurationError, KeyDecodeError

PEM_MARKER = b"-----BEGIN"


class Credentials(BaseModel):
    account: str
    user: str
    role: Optional[str] = None
    warehouse: Optional[str] = None
    database: Optional[str] = None
    schema_: Optional[str] = Field(default=None, alias="schema")
    private_key_der: bytes = Field(..., repr=False)
    public_key_fingerprint: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def decode_private_key(blob: str) -> bytes:
    """Decode a base64 key blob into PKCS#8 DER bytes.

    Embedded whitespace (line breaks from copy/paste, PEM-style wrapping) is
    stripped before decoding. A blob that turns out to be a base64-encoded PEM
    file is converted to DER so the rest of the pipeline only sees one format.
    """
    compact = "".join(blob.split())
    if not compact:
        raise KeyDecodeError("Private key blob is empty")
    try:
        raw = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyDecodeError(f"Private key is not valid base64: {e}")
    return _to_pkcs8_der(raw)


def _to_pkcs8_der(raw: bytes) -> bytes:
    if not raw:
        raise KeyDecodeError("Private key decoded to zero bytes")
    if not raw.lstrip().startswith(PEM_MARKER):
        return raw
    try:
        private_key = load_pem_private_key(raw, password=None)
    except (ValueError, TypeError) as e:
        raise KeyDecodeError(f"Invalid PEM private key: {e}")
    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _read_key_file(path: str) -> bytes:
    if not os.path.exists(path):
        raise ConfigurationError(f"Private key file not found: {path}")
    if not os.access(path, os.R_OK):
        raise ConfigurationError(f"Cannot read private key file: {path}")

    file_permissions = oct(os.stat(path).st_mode)[-3:]
    if file_permissions not in ("600", "400"):
        logger.warning(
            f"Private key file has permissions {file_permissions}. "
            "Consider setting to 600 or 400 for security."
        )

    with open(path, "rb") as key_file:
        return _to_pkcs8_der(key_file.read())


def load_credentials(config: Optional[Settings] = None) -> Credentials:
    """Build Credentials from settings, failing before any network or crypto work."""
    config = config or default_settings

    account = _clean(config.sf_account)
    user = _clean(config.sf_user)
    key_blob = _clean(config.sf_private_key_b64)
    key_path = _clean(config.sf_private_key_path)

    missing = []
    if not account:
        missing.append("SF_ACCOUNT")
    if not user:
        missing.append("SF_USER")
    if not key_blob and not key_path:
        missing.append("SF_PRIVATE_KEY_B64")
    if missing:
        raise ConfigurationError(
            f"Snowflake credentials not configured (missing {', '.join(missing)}). "
            "SF_ACCOUNT, SF_USER and SF_PRIVATE_KEY_B64 (or SF_PRIVATE_KEY_PATH) are required."
        )

    if key_blob:
        private_key_der = decode_private_key(key_blob)
    else:
        logger.debug(f"Reading private key from file: {key_path}")
        private_key_der = _read_key_file(key_path)

    fingerprint = _clean(config.snowflake_public_key_fp)
    if fingerprint:
        logger.info("Using configured public key fingerprint (SNOWFLAKE_PUBLIC_KEY_FP)")
    else:
        logger.info("No public key fingerprint configured; it will be derived from the private key")

    return Credentials(
        account=account,
        user=user,
        role=_clean(config.sf_role),
        warehouse=_clean(config.sf_warehouse),
        database=_clean(config.sf_database),
        schema=_clean(config.sf_schema),
        private_key_der=private_key_der,
        public_key_fingerprint=fingerprint,
    )
