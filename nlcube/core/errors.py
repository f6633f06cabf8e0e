# nlcube/core/errors.py
from __future__ import annotations
from typing import Any, Dict, Optional


class NlCubeError(Exception):
    """Base class; every failure keeps its originating kind up to the service boundary."""

    kind: str = "InternalError"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.context}


class ConfigurationError(NlCubeError):
    kind = "ConfigurationError"


# --- registry / pool ---

class InvalidName(NlCubeError):
    kind = "InvalidName"


class AlreadyExists(NlCubeError):
    kind = "AlreadyExists"


class UnknownSubject(NlCubeError):
    kind = "UnknownSubject"


class Busy(NlCubeError):
    kind = "Busy"


class PoolConnectionError(NlCubeError):
    # Named to avoid shadowing the builtin ConnectionError.
    kind = "ConnectionError"


class PoolExhausted(NlCubeError):
    kind = "PoolExhausted"


# --- translation pipeline ---

class InvalidQuestion(NlCubeError):
    kind = "InvalidQuestion"


class TranslationUnavailable(NlCubeError):
    kind = "TranslationUnavailable"


class MalformedResponse(NlCubeError):
    kind = "MalformedResponse"

    def __init__(self, message: str, raw_model_output: Optional[str] = None, **context: Any):
        super().__init__(message, raw_model_output=raw_model_output, **context)


class UnsafeQuery(NlCubeError):
    kind = "UnsafeQuery"

    def __init__(self, message: str, sql: Optional[str] = None,
                 raw_model_output: Optional[str] = None, issues: Optional[list] = None):
        super().__init__(message, sql=sql, raw_model_output=raw_model_output, issues=issues)


# --- execution ---

class ExecutionError(NlCubeError):
    kind = "ExecutionError"

    def __init__(self, message: str, sql: Optional[str] = None, **context: Any):
        super().__init__(message, sql=sql, **context)


class ExecutionTimeout(NlCubeError):
    kind = "ExecutionTimeout"

    def __init__(self, message: str, sql: Optional[str] = None):
        super().__init__(message, sql=sql)


class SerializationError(NlCubeError):
    kind = "SerializationError"

    def to_dict(self) -> Dict[str, Any]:
        # Internal defect class: details stay in the logs.
        return {"kind": self.kind, "message": "The result could not be prepared. Please try again later."}
