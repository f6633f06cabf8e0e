# nlcube/core/sql_guard.py
# Textual checks: always run first, and stand in for the parser when sqlglot
# cannot read DuckDB-specific syntax.
from __future__ import annotations
import re
from typing import Iterable, List

STRIP = re.compile(r"/\*.*?\*/|--[^\n]*", flags=re.S)  # strip /* */ and -- comments
STRING_LIT = re.compile(r"'(?:[^']|'')*'")
QUOTED_IDENT = re.compile(r'"(?:[^"]|"")*"')
LEADING_WORD = re.compile(r"^[\s(]*([A-Za-z_]+)")

READ_ONLY_LEADING = {
    "select", "with", "from", "values", "show", "describe", "summarize",
    "explain", "pivot", "unpivot",
}
DANGERS = re.compile(
    r"\b(insert|update|delete|merge|alter|drop|truncate|grant|revoke|create|copy|attach|detach|"
    r"install|load|export|import|vacuum|checkpoint|call|pragma|set|reset|use|begin|commit|rollback)\b",
    re.I,
)
# Table functions and replacement scans that read outside the subject's store.
FILE_FUNCS = re.compile(
    r"\b(read_\w+|parquet_scan|parquet_metadata|parquet_schema|sniff_csv|glob|"
    r"iceberg_scan|delta_scan|sqlite_scan|postgres_scan|mysql_scan)\s*\(",
    re.I,
)
FROM_STRING = re.compile(r"\b(from|join)\s*\(?\s*'", re.I)
ALWAYS_BLOCKED = re.compile(r"^\s*(attach|detach|copy|install|load|export|import)\b", re.I)


def strip_comments(sql: str) -> str:
    return STRIP.sub(" ", sql).strip()


def mask_literals(sql: str) -> str:
    """Blank out string literals and quoted identifiers so keywords inside them don't count."""
    s = STRING_LIT.sub("''", sql)
    return QUOTED_IDENT.sub('""', s)


def split_statements(sql: str) -> List[str]:
    masked = mask_literals(strip_comments(sql))
    return [p.strip() for p in masked.split(";") if p.strip()]


def leading_keyword(sql: str) -> str:
    m = LEADING_WORD.match(strip_comments(sql))
    return m.group(1).lower() if m else ""


def heuristic_issues(sql: str, allow_writes: bool = False) -> List[str]:
    """Checks that hold with or without a parser."""
    issues: List[str] = []
    s = strip_comments(sql)
    statements = split_statements(s)
    if not statements:
        return ["Empty statement"]
    if len(statements) > 1:
        issues.append(f"Multiple statements not allowed (found {len(statements)})")

    no_strings = STRING_LIT.sub("''", s)
    if FROM_STRING.search(no_strings) or FILE_FUNCS.search(no_strings):
        issues.append("Reading files outside the subject's store is not allowed")
    if ALWAYS_BLOCKED.search(s):
        issues.append(f"Statement not allowed: {leading_keyword(s).upper()}")
    elif not allow_writes and leading_keyword(s) not in READ_ONLY_LEADING:
        issues.append(f"Only read-only queries are allowed (got {leading_keyword(s).upper() or '?'})")
    return issues


def degraded_issues(sql: str, other_subjects: Iterable[str], local_tables: Iterable[str] = (),
                    allow_writes: bool = False) -> List[str]:
    """Keyword and qualifier scan used when the statement cannot be parsed."""
    issues: List[str] = []
    masked = STRING_LIT.sub("''", strip_comments(sql))
    if not allow_writes:
        hit = DANGERS.search(QUOTED_IDENT.sub('""', masked))
        if hit:
            issues.append(f"Prohibited keyword detected: {hit.group(1).upper()} (degraded mode)")
    local = {t.lower() for t in local_tables}
    for name in other_subjects:
        if name.lower() in local:
            continue
        if re.search(rf'(?:(?<![\w."]){re.escape(name)}|"{re.escape(name)}")\s*\.', masked, flags=re.I):
            issues.append(f"Reference to another subject: {name} (degraded mode)")
    return issues
