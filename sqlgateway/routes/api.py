import jwt
from fastapi import APIRouter, Depends
from sqlgateway.auth.credentials import load_credentials
from sqlgateway.auth.keypair_auth import SnowflakeKeyPair
from sqlgateway.config.logging_config import logger
from sqlgateway.config.settings import Settings, settings
from sqlgateway.models.schemas import (
    AuthTestResponse,
    ErrorResponse,
    HealthResponse,
    KeyPairInfoResponse,
    QueryRequest,
    StatementResult,
)
from sqlgateway.services.snowflake import SnowflakeService

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

def get_settings() -> Settings:
    return settings

@router.get("/health", response_model=HealthResponse)
async def health_check(config: Settings = Depends(get_settings)):
    """Health check endpoint; never contacts Snowflake"""
    return HealthResponse(
        status="healthy",
        account=config.sf_account,
        user=config.sf_user,
        fingerprint_configured=bool(config.snowflake_public_key_fp),
    )

@router.get("/keypair-info", response_model=KeyPairInfoResponse, responses=ERROR_RESPONSES)
async def get_keypair_info(config: Settings = Depends(get_settings)):
    """Public key details needed to register the key on the Snowflake user"""
    logger.debug("Generating key pair information")
    credentials = load_credentials(config)
    keypair_client = SnowflakeKeyPair(credentials)

    derived = keypair_client.derive_fingerprint()
    configured = credentials.public_key_fingerprint
    matches = None
    if configured:
        matches = configured == derived
        if not matches:
            logger.warning(
                f"Configured fingerprint {configured} does not match key-derived {derived}"
            )

    public_key_pem = keypair_client.get_public_key_pem()
    return KeyPairInfoResponse(
        username=credentials.user,
        public_key_fingerprint=derived,
        configured_fingerprint=configured,
        fingerprint_matches=matches,
        public_key_pem=public_key_pem,
        sql_command=f"ALTER USER {credentials.user} SET RSA_PUBLIC_KEY='{public_key_pem}';",
    )

@router.post("/test-auth", response_model=AuthTestResponse, responses=ERROR_RESPONSES)
async def test_authentication(config: Settings = Depends(get_settings)):
    """Build a JWT without executing any queries"""
    keypair_client = SnowflakeKeyPair(load_credentials(config))
    token = keypair_client.create_jwt_token()
    claims = jwt.decode(token, options={"verify_signature": False})
    return AuthTestResponse(
        success=True,
        message="JWT created successfully",
        issuer=claims["iss"],
        subject=claims["sub"],
    )

@router.post("/query", response_model=StatementResult, responses=ERROR_RESPONSES)
async def execute_query(request: QueryRequest, config: Settings = Depends(get_settings)):
    """Execute a SQL statement and return its columns and rows"""
    snowflake_service = SnowflakeService.from_settings(config)
    return await snowflake_service.execute_sql(request.query)
