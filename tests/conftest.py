"""Pytest configuration and fixtures."""

import base64
import os

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from loguru import logger

# Keep a developer's .env or shell from leaking into the tests
for _var in (
    "SF_ACCOUNT", "SF_USER", "SF_ROLE", "SF_WAREHOUSE", "SF_DATABASE", "SF_SCHEMA",
    "SF_BASE_URL", "SF_PRIVATE_KEY_B64", "SF_PRIVATE_KEY_PATH", "SNOWFLAKE_PUBLIC_KEY_FP",
):
    os.environ.pop(_var, None)

from sqlgateway.auth.credentials import Credentials  # noqa: E402
from sqlgateway.config.settings import Settings  # noqa: E402

BASE_URL = "https://myorg-acct.snowflakecomputing.com"
STATEMENTS_URL = f"{BASE_URL}/api/v2/statements"


@pytest.fixture(scope="session")
def private_key():
    """A throwaway RSA key shared by the whole session."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_der(private_key):
    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def private_key_b64(private_key_der):
    return base64.b64encode(private_key_der).decode("ascii")


@pytest.fixture
def settings_factory(private_key_b64):
    def make(**overrides):
        values = dict(
            _env_file=None,
            sf_account="myorg-acct",
            sf_user="svc_user",
            sf_role="ANALYST",
            sf_warehouse="COMPUTE_WH",
            sf_database="FLEET",
            sf_schema="PUBLIC",
            sf_private_key_b64=private_key_b64,
            poll_interval=0.01,
            poll_max_attempts=5,
        )
        values.update(overrides)
        return Settings(**values)

    return make


@pytest.fixture
def credentials(private_key_der):
    return Credentials(
        account="myorg-acct",
        user="svc_user",
        role="ANALYST",
        warehouse="COMPUTE_WH",
        database="FLEET",
        schema="PUBLIC",
        private_key_der=private_key_der,
    )


@pytest.fixture
def log_messages():
    """Collect loguru output for assertions."""
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
