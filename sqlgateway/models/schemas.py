from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, StrictStr, computed_field
from typing import Any, Dict, List, Optional

class QueryRequest(BaseModel):
    query: StrictStr = Field(..., min_length=1, description="SQL text to execute")

class StatementRequest(BaseModel):
    """Body of ``POST /api/v2/statements``. Unset targets are omitted from the payload."""
    model_config = ConfigDict(populate_by_name=True)

    statement: str = Field(..., min_length=1)
    timeout: int = 60
    database: Optional[str] = None
    schema_: Optional[str] = Field(default=None, alias="schema")
    warehouse: Optional[str] = None
    role: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

class StatementResult(BaseModel):
    columns: List[Dict[str, Any]] = Field(default_factory=list)
    rows: List[List[Any]] = Field(default_factory=list)

    @computed_field(alias="rowCount")
    @property
    def row_count(self) -> int:
        return len(self.rows)

class PollStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    PENDING = "PENDING"
    COMPLETE = "COMPLETE"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"

class PollState(BaseModel):
    handle: str
    interval: float
    max_attempts: int = Field(..., ge=1)
    attempt: int = 0
    status: PollStatus = PollStatus.SUBMITTED

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

class ErrorResponse(BaseModel):
    error: str

class HealthResponse(BaseModel):
    status: str
    account: Optional[str] = None
    user: Optional[str] = None
    fingerprint_configured: bool

class KeyPairInfoResponse(BaseModel):
    username: str
    public_key_fingerprint: str
    configured_fingerprint: Optional[str] = None
    fingerprint_matches: Optional[bool] = None
    public_key_pem: str
    sql_command: str

class AuthTestResponse(BaseModel):
    success: bool
    message: str
    issuer: str
    subject: str
