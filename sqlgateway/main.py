from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlgateway import __version__
from sqlgateway.routes.api import router
from sqlgateway.config.settings import settings
from sqlgateway.config.logging_config import logger, setup_logging
from sqlgateway.errors import GatewayError
from sqlgateway.models.schemas import ErrorResponse
from sqlgateway.services.snowflake import SnowflakeService


async def check_connection() -> bool:
    """Run ``SELECT 1`` through the gateway and log the outcome."""
    try:
        logger.info("Testing Snowflake connection and authentication...")
        service = SnowflakeService.from_settings(settings)
        result = await service.execute_sql("SELECT 1 as test_column")
    except GatewayError as e:
        logger.error(f"❌ Snowflake connection test failed: {e}")
        return False

    logger.info(f"✅ Snowflake connection successful ({result.row_count} row returned)")
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(
        f"SQL gateway starting for account={settings.sf_account} user={settings.sf_user}"
    )
    if settings.startup_check:
        await check_connection()
    yield


app = FastAPI(
    title="Snowflake SQL Gateway",
    description="Executes SQL against the Snowflake SQL API using key-pair JWT authentication",
    version=__version__,
    lifespan=lifespan,
)

# Browser clients call /api/v1/query directly
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    logger.error(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc)).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    reasons = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    logger.warning(f"Rejected request: {reasons}")
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error=f"SQL query is required ({reasons})").model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error while serving {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error=str(exc) or type(exc).__name__).model_dump(),
    )

# Include API routes
app.include_router(router, prefix="/api/v1")

@app.get("/")
async def root():
    return {
        "message": "Snowflake SQL Gateway",
        "auth_method": "keypair",
        "docs": "/docs"
    }


def run():
    import uvicorn
    uvicorn.run(
        "sqlgateway.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )


if __name__ == "__main__":
    run()
