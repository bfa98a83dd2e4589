# smart_insights/schemas.py
from typing import List, Any, Dict, Literal, Optional
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict, field_validator

# Response statuses
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

# Update types
STEP_OUTPUT = "step_output"
DEBUG_LOG = "debug_log"
ERROR = "error"
FINAL_RESPONSE = "final_response"

StatusLiteral = Literal["in_progress", "completed", "failed"]
UpdateTypeLiteral = Literal["step_output", "debug_log", "error", "final_response"]


class AskOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    llm_provider: str = Field(..., min_length=1)
    llm_config: str = Field(..., min_length=1)


class AskRequest(BaseModel):
    """Body of POST /assistant/ask. Immutable once accepted."""
    model_config = ConfigDict(frozen=True)

    db_configuration_name: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)
    options: AskOptions

    @field_validator("db_configuration_name", "question")
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class Update(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    timestamp: datetime
    type: UpdateTypeLiteral


class AssistantResponse(BaseModel):
    uuid: str
    question: str
    success: bool
    status: StatusLiteral
    response: List[Update] = Field(default_factory=list)

    def updates_of(self, update_type: str) -> List[Update]:
        return [u for u in self.response if u.type == update_type]


class DatabaseConfig(BaseModel):
    name: str = Field(..., min_length=1)
    type: Literal["postgresql", "sqlite"] = "postgresql"
    host: Optional[str] = None
    port: Optional[int] = 5432
    db_name: str = Field(..., min_length=1)
    username: Optional[str] = None
    password: Optional[str] = None
    # ssl_mode / schema for postgresql
    options: Dict[str, Any] = Field(default_factory=dict)


class LLMConfig(BaseModel):
    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    api_key: str = ""
    model: str = ""
    options: Dict[str, Any] = Field(default_factory=dict)
