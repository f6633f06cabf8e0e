# nlcube/core/redact.py
from __future__ import annotations
import re

API_KEY_RE = re.compile(r"(key=)([^&\s]+)", re.I)
BEARER_RE = re.compile(r"(bearer\s+)(\S+)", re.I)


def redact(s: str) -> str:
    """Mask credentials that providers echo back in error messages."""
    out = API_KEY_RE.sub(r"\1***REDACTED***", s)
    out = BEARER_RE.sub(r"\1***REDACTED***", out)
    # Heuristic: mask long tokens
    return re.sub(r"([A-Za-z0-9_\-]{32,})", "***", out)
