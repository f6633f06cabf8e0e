from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional


class QueryRequest(BaseModel):
    query: str
    subject: Optional[str] = None
    # "arrow": Arrow IPC stream body; "json": metadata only
    format: Literal["arrow", "json"] = "arrow"


class NlQueryRequest(BaseModel):
    question: str
    subject: Optional[str] = None
    format: Literal["arrow", "json"] = "arrow"


class QueryMetadata(BaseModel):
    subject: str
    sql: str
    columns: List[str] = Field(default_factory=list)
    row_count: int = 0
    elapsed_ms: int = 0
    schema_empty: bool = False
    raw_model_output: Optional[str] = None


class SubjectInfo(BaseModel):
    name: str
    storage_path: str
    attached: bool = True


class SchemaResponse(BaseModel):
    subject: str
    schema_text: str


class ErrorBody(BaseModel):
    # Error context (sql, raw_model_output, issues...) rides along as extra keys.
    model_config = ConfigDict(extra="allow")

    kind: str
    message: str
