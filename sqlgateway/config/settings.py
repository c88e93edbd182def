from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # Snowflake Configuration
    sf_account: Optional[str] = None
    sf_user: Optional[str] = None
    sf_role: Optional[str] = None
    sf_warehouse: Optional[str] = None
    sf_database: Optional[str] = None
    sf_schema: Optional[str] = None
    sf_base_url: Optional[str] = None

    # Key Pair Configuration
    sf_private_key_b64: Optional[str] = None
    sf_private_key_path: Optional[str] = None
    snowflake_public_key_fp: Optional[str] = None

    # SQL API behaviour
    statement_timeout: int = 60
    http_timeout: float = 120.0
    poll_interval: float = 1.0
    poll_max_attempts: int = 30
    cancel_on_timeout: bool = True

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False
    log_level: str = "INFO"
    startup_check: bool = False
    cors_origins: List[str] = ["*"]

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
