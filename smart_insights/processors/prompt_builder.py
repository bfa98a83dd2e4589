# smart_insights/processors/prompt_builder.py
import datetime
import decimal
import json
import uuid
from typing import Any, Dict, List

SQL_SYSTEM_PROMPT = (
    "You are a PostgreSQL expert who turns natural language questions into SQL queries."
)

REPORT_SYSTEM_PROMPT = (
    "You are a data analyst who explains query results in a clear, concise way."
)

SQL_USER_PROMPT_TEMPLATE = """
Convert the user's question into a single read-only SQL query for the database described below.

Database Schema:
\"\"\"
{schema}
\"\"\"

User Question: {question}

Rules:
1) Use only tables and columns that appear in the schema. Do not invent joins.
2) Return exactly one SELECT statement. No INSERT, UPDATE, DELETE or DDL of any kind.
3) Do not put comments inside the query.
4) Join, filter (WHERE), aggregate (GROUP BY / HAVING) and ORDER BY as the question needs.
5) Add a LIMIT when the result could be large.
6) Write SQL keywords in lowercase and follow PostgreSQL syntax.
7) Handle NULL values explicitly where they would change the answer.

Response format (plain text, no markdown fences):
<sql>
your query here
</sql>
"""

REPORT_USER_PROMPT_TEMPLATE = """
Write a markdown report that answers the user's question from the query result below.

User Question: {question}

Query Result (JSON rows):
{result_json}

Rules:
1) Read the structure and values of the rows before writing.
2) Pick the presentation that fits the data: a table for columnar data, a list for
   enumerations, a short summary for aggregates.
3) Call out notable statistics or patterns the rows actually show. Do not guess beyond them.
4) Format numbers sensibly (currency, percentages, thousands separators).
5) Keep it concise.
6) Everything you want shown must be inside the markdown tags; nothing outside them is displayed.

Response format:
<markdown>
your report here
</markdown>
"""


def build_sql_messages(schema: str, question: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SQL_SYSTEM_PROMPT},
        {"role": "user", "content": SQL_USER_PROMPT_TEMPLATE.format(schema=schema, question=question).strip()},
    ]


def build_report_messages(question: str, result_json: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": REPORT_SYSTEM_PROMPT},
        {"role": "user", "content": REPORT_USER_PROMPT_TEMPLATE.format(
            question=question, result_json=result_json).strip()},
    ]


def extract_tagged(tag: str, text: str) -> str:
    """
    Return the trimmed content between the first <tag> and the first </tag>.
    Returns "" when either delimiter is missing; callers must treat "" as failure.
    """
    if not text:
        return ""
    start_tag = f"<{tag}>"
    end_tag = f"</{tag}>"
    start = text.find(start_tag)
    end = text.find(end_tag)
    if start == -1 or end == -1:
        return ""
    start += len(start_tag)
    if end < start:
        return ""
    return text[start:end].strip()


def _json_default(value: Any) -> Any:
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return value.total_seconds()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def serialize_result(rows: List[Dict[str, Any]]) -> str:
    """JSON-encode query rows for the report prompt."""
    return json.dumps(rows, default=_json_default)
