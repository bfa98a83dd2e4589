# smart_insights/connectors/sql_connector.py
"""
Schema introspection and query execution against one registered data source.

The connector wraps a pooled SQLAlchemy engine owned by the SourceRegistry.
It never closes the engine and does not enforce read-only semantics: the
caller is expected to have vetted the SQL text before execute_query().
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from smart_insights.errors import QueryExecutionError, SourceConnectionError


@dataclass
class ColumnInfo:
    name: str
    data_type: str
    nullable: bool = True
    default: Optional[str] = None
    comment: Optional[str] = None


@dataclass
class ForeignKeyInfo:
    name: Optional[str]
    columns: List[str]
    ref_table: str
    ref_columns: List[str]


@dataclass
class IndexInfo:
    name: Optional[str]
    columns: List[str]
    unique: bool = False


@dataclass
class TableInfo:
    name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    primary_key: List[str] = field(default_factory=list)
    foreign_keys: List[ForeignKeyInfo] = field(default_factory=list)
    indexes: List[IndexInfo] = field(default_factory=list)
    comment: Optional[str] = None
    is_view: bool = False


@dataclass
class SchemaInfo:
    tables: List[TableInfo] = field(default_factory=list)
    views: List[TableInfo] = field(default_factory=list)

    def object_names(self) -> List[str]:
        return [t.name for t in self.tables] + [v.name for v in self.views]

    def render(self) -> str:
        """Model-readable text block describing every table and view."""
        lines = ["Database Schema:", ""]
        for obj in self.tables + self.views:
            lines.append(f"{'View' if obj.is_view else 'Table'}: {obj.name}")
            if obj.comment:
                lines.append(f"Description: {obj.comment}")
            lines.append("Columns:")
            for col in obj.columns:
                entry = f"  - {col.name} {col.data_type}"
                if not col.nullable:
                    entry += " NOT NULL"
                if col.default is not None:
                    entry += f" DEFAULT {col.default}"
                if col.comment:
                    entry += f" -- {col.comment}"
                lines.append(entry)
            if obj.primary_key:
                lines.append(f"Primary Key: {', '.join(obj.primary_key)}")
            if obj.foreign_keys:
                lines.append("Foreign Keys:")
                for fk in obj.foreign_keys:
                    lines.append(
                        f"  - ({', '.join(fk.columns)}) -> {fk.ref_table}({', '.join(fk.ref_columns)})"
                    )
            if obj.indexes:
                lines.append("Indexes:")
                for ix in obj.indexes:
                    unique = " UNIQUE" if ix.unique else ""
                    lines.append(f"  - {ix.name or '(unnamed)'} ({', '.join(ix.columns)}){unique}")
            lines.append("")
        return "\n".join(lines)


@dataclass
class QueryResult:
    columns: List[str]
    rows: List[Dict[str, Any]]

    @property
    def row_count(self) -> int:
        return len(self.rows)


class SourceConnector(ABC):
    """Capability surface every data-source connector provides."""

    name: str = ""

    @abstractmethod
    def inspect_schema(self) -> SchemaInfo:
        ...

    @abstractmethod
    def execute_query(self, sql: str) -> QueryResult:
        ...

    def get_schema(self) -> str:
        return self.inspect_schema().render()


def _normalize_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return value


class SQLConnector(SourceConnector):
    def __init__(self, engine: Engine, name: str = "", schema: Optional[str] = None):
        self.engine = engine
        self.name = name
        self.schema = schema

    def _columns(self, insp, relation: str) -> List[ColumnInfo]:
        return [
            ColumnInfo(
                name=c["name"],
                data_type=str(c["type"]),
                nullable=bool(c.get("nullable", True)),
                default=c.get("default"),
                comment=c.get("comment"),
            )
            for c in insp.get_columns(relation, schema=self.schema)
        ]

    def _comment(self, insp, relation: str) -> Optional[str]:
        try:
            return insp.get_table_comment(relation, schema=self.schema).get("text")
        except NotImplementedError:
            return None

    def inspect_schema(self) -> SchemaInfo:
        try:
            insp = inspect(self.engine)
            info = SchemaInfo()
            for table in sorted(insp.get_table_names(schema=self.schema)):
                pk = insp.get_pk_constraint(table, schema=self.schema) or {}
                info.tables.append(TableInfo(
                    name=table,
                    columns=self._columns(insp, table),
                    primary_key=list(pk.get("constrained_columns") or []),
                    foreign_keys=[
                        ForeignKeyInfo(
                            name=fk.get("name"),
                            columns=list(fk.get("constrained_columns") or []),
                            ref_table=fk.get("referred_table", ""),
                            ref_columns=list(fk.get("referred_columns") or []),
                        )
                        for fk in insp.get_foreign_keys(table, schema=self.schema)
                    ],
                    indexes=[
                        IndexInfo(
                            name=ix.get("name"),
                            columns=[c for c in ix.get("column_names") or [] if c],
                            unique=bool(ix.get("unique")),
                        )
                        for ix in insp.get_indexes(table, schema=self.schema)
                    ],
                    comment=self._comment(insp, table),
                ))
            for view in sorted(insp.get_view_names(schema=self.schema)):
                info.views.append(TableInfo(
                    name=view,
                    columns=self._columns(insp, view),
                    comment=self._comment(insp, view),
                    is_view=True,
                ))
            return info
        except SQLAlchemyError as e:
            raise SourceConnectionError(f"failed to read schema of '{self.name}': {e}") from e

    def execute_query(self, sql: str) -> QueryResult:
        try:
            # Sent verbatim: no bind-parameter parsing of ':' or '%' in generated SQL
            with self.engine.connect() as conn:
                result = conn.execution_options(no_parameters=True).exec_driver_sql(sql)
                if not result.returns_rows:
                    return QueryResult(columns=[], rows=[])
                columns = list(result.keys())
                rows = [
                    {col: _normalize_value(val) for col, val in zip(columns, row)}
                    for row in result
                ]
                # Never commit anything the statement may have done
                conn.rollback()
                return QueryResult(columns=columns, rows=rows)
        except SQLAlchemyError as e:
            raise QueryExecutionError(f"query failed on '{self.name}': {e}") from e
