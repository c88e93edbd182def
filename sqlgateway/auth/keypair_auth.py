import jwt
import time
import base64
import hashlib
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import load_der_private_key
from typing import Dict, Optional

from sqlgateway import __version__
from sqlgateway.auth.credentials import Credentials
from sqlgateway.config.logging_config import logger
from sqlgateway.errors import KeyDecodeError

FINGERPRINT_PREFIX = "SHA256:"
JWT_LIFETIME_SECONDS = 3600


class SnowflakeKeyPair:
    """Key-pair (KEYPAIR_JWT) authentication for the Snowflake SQL API.

    One instance serves a single statement execution: the key is imported
    lazily, the fingerprint resolved once, and every call to
    ``create_jwt_token`` mints a new token.
    """

    def __init__(self, credentials: Credentials):
        self.credentials = credentials
        self.account = credentials.account
        self.username = credentials.user
        self.private_key: Optional[rsa.RSAPrivateKey] = None
        self.public_key_fp: Optional[str] = None
        self.fingerprint_derived = False

    @property
    def qualified_username(self) -> str:
        return f"{self.account.upper()}.{self.username.upper()}"

    def load_private_key(self) -> rsa.RSAPrivateKey:
        """Import the PKCS#8 DER private key"""
        if self.private_key is not None:
            return self.private_key

        try:
            private_key = load_der_private_key(self.credentials.private_key_der, password=None)
        except TypeError as e:
            raise KeyDecodeError(f"Private key must be unencrypted PKCS#8: {e}")
        except (ValueError, UnsupportedAlgorithm) as e:
            raise KeyDecodeError(f"Private key is not valid PKCS#8 DER: {e}")

        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise KeyDecodeError(
                f"Private key must be an RSA key, got {type(private_key).__name__}"
            )

        # load_der_private_key also takes PKCS#1 DER
        pkcs1_der = private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption()
        )
        if pkcs1_der == self.credentials.private_key_der:
            raise KeyDecodeError(
                "Private key is not PKCS#8 DER (PKCS#1 'RSA PRIVATE KEY' blobs must be "
                "converted with: openssl pkcs8 -topk8 -nocrypt -outform DER)"
            )

        logger.debug(f"Loaded RSA private key ({private_key.key_size} bits)")
        self.private_key = private_key
        return private_key

    def derive_fingerprint(self) -> str:
        """SHA256 fingerprint of the DER SubjectPublicKeyInfo, in Snowflake's format"""
        public_key_der = self.load_private_key().public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )
        sha256_hash = hashlib.sha256(public_key_der).digest()
        return FINGERPRINT_PREFIX + base64.b64encode(sha256_hash).decode('utf-8')

    def resolve_fingerprint(self) -> str:
        """Return the configured fingerprint verbatim, or derive it from the key."""
        if self.public_key_fp:
            return self.public_key_fp

        configured = self.credentials.public_key_fingerprint
        if configured:
            if not configured.startswith(FINGERPRINT_PREFIX):
                logger.warning(
                    f"Configured fingerprint does not start with '{FINGERPRINT_PREFIX}'; "
                    "Snowflake will most likely reject the JWT"
                )
            logger.info(f"Fingerprint source: configured (no derivation): {configured}")
            self.public_key_fp = configured
            self.fingerprint_derived = False
        else:
            self.public_key_fp = self.derive_fingerprint()
            self.fingerprint_derived = True
            logger.info(f"Fingerprint source: derived from private key: {self.public_key_fp}")

        return self.public_key_fp

    def get_public_key_pem(self) -> str:
        """Get public key in PEM format for Snowflake user configuration"""
        public_key_pem = self.load_private_key().public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode('utf-8')

        # Remove PEM headers and footers, keep only the key content
        lines = public_key_pem.strip().split('\n')[1:-1]
        return ''.join(lines)

    def create_jwt_token(self, now: Optional[int] = None) -> str:
        """Create JWT token for Snowflake authentication"""
        private_key = self.load_private_key()
        fingerprint = self.resolve_fingerprint()

        if now is None:
            now = int(time.time())

        issuer = f"{self.qualified_username}.{fingerprint}"
        payload = {
            'iss': issuer,
            'sub': self.qualified_username,
            'iat': now,
            'exp': now + JWT_LIFETIME_SECONDS,
        }

        token = jwt.encode(payload, private_key, algorithm='RS256', headers={'typ': 'JWT'})
        logger.info(f"Built JWT with issuer {issuer}")
        return token

    def get_auth_headers(self, token: Optional[str] = None) -> Dict[str, str]:
        """Get authentication headers for API requests.

        The token is placed in the header exactly as produced by the signer;
        its base64url characters (including '-') must reach Snowflake untouched.
        """
        if token is None:
            token = self.create_jwt_token()

        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": f"sqlgateway/{__version__}",
            "X-Snowflake-Authorization-Token-Type": "KEYPAIR_JWT"
        }
