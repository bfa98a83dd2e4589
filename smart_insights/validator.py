# smart_insights/validator.py
"""
Lexical read-only check for generated SQL.

This is a coarse textual filter, not a parser and not a safety guarantee:
- validate_sql_query(sql) -> { valid, errors }

Known limitations, kept on purpose:
- Keywords are matched as substrings, so benign identifiers such as
  `updates_log`, `updated_at` or `created_at` are rejected.
- String literals and comments are plain text to the filter. A statement
  that opens with a comment or a WITH clause fails the `select` prefix rule.
"""

from typing import Any, Dict, List

FORBIDDEN_KEYWORDS = ("drop", "truncate", "delete", "update", "insert", "alter", "create")


def validate_sql_query(sql: str) -> Dict[str, Any]:
    """Return {"valid": bool, "errors": [str, ...]} for a candidate query."""
    errors: List[str] = []
    query = (sql or "").strip().lower()

    if not query:
        return {"valid": False, "errors": ["query is empty"]}

    for keyword in FORBIDDEN_KEYWORDS:
        if keyword in query:
            errors.append(f"query contains forbidden keyword: {keyword}")

    if not query.startswith("select"):
        errors.append("query must start with SELECT")

    return {"valid": not errors, "errors": errors}
