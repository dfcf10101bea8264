"""SQLite implementation of the document store."""

from __future__ import annotations

import json
import re
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

from audit_log.access import ANY_ROLE, AccessGrant, PermissionContext, get_permission_context
from audit_log.config import MEMORY_DATABASE
from audit_log.errors import (
    AuthorizationError,
    SchemaViolationError,
    StoreNotReadyError,
    StoreOperationError,
)
from audit_log.models import (
    ID_KEY,
    READ_KEY,
    WRITE_KEY,
    AttributeSpec,
    AttributeType,
    Equal,
    Filter,
    IndexSpec,
    InSet,
    LessThan,
    OrderType,
)
from audit_log.store.base import DEFAULT_LIMIT, Document, DocumentStore
from audit_log.utils.time import utc_now_iso

_METADATA_TABLE = "_collections"
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,63}$")
_COLUMN_TYPES = {
    AttributeType.STRING: "TEXT",
    AttributeType.INTEGER: "INTEGER",
}

_SqlParams = list[object]


@dataclass(frozen=True)
class _CollectionSchema:
    name: str
    attributes: dict[str, AttributeSpec]

    @property
    def table(self) -> str:
        return f'"{self.name}"'

    def column(self, attribute: str) -> str:
        if attribute == ID_KEY:
            return "_uid"
        if attribute not in self.attributes:
            raise SchemaViolationError(
                f"Unknown attribute '{attribute}' in collection '{self.name}'",
                attribute=attribute,
            )
        return f'"{attribute}"'


def _check_identifier(value: str, kind: str) -> None:
    if not _IDENTIFIER_RE.match(value) or value.startswith("_"):
        raise SchemaViolationError(f"Invalid {kind} name: {value!r}", attribute=value)


def _attribute_to_json(attribute: AttributeSpec) -> dict[str, object]:
    return {
        "key": attribute.key,
        "type": attribute.type.value,
        "size": attribute.size,
        "size_in_bytes": attribute.size_in_bytes,
        "required": attribute.required,
    }


def _index_to_json(index: IndexSpec) -> dict[str, object]:
    return {"key": index.key, "type": index.type.value, "attributes": list(index.attributes)}


def _permission_list(document: Mapping[str, Any], key: str) -> list[str]:
    value = document.get(key) or []
    if isinstance(value, str) or not all(isinstance(item, str) for item in value):
        raise SchemaViolationError(f"'{key}' must be a list of permission strings", attribute=key)
    return list(value)


def _validate_document(schema: _CollectionSchema, document: Mapping[str, Any]) -> dict[str, object]:
    for key in document:
        if not key.startswith("$") and key not in schema.attributes:
            raise SchemaViolationError(
                f"Unknown attribute '{key}' in collection '{schema.name}'", attribute=key
            )

    values: dict[str, object] = {}
    for key, attribute in schema.attributes.items():
        value = document.get(key)
        if value is None:
            if attribute.required:
                raise SchemaViolationError(f"Missing required attribute '{key}'", attribute=key)
            values[key] = None
            continue
        if attribute.type is AttributeType.STRING:
            if not isinstance(value, str):
                raise SchemaViolationError(f"Attribute '{key}' must be a string", attribute=key)
            length = len(value.encode("utf-8")) if attribute.size_in_bytes else len(value)
            if attribute.size and length > attribute.size:
                unit = "bytes" if attribute.size_in_bytes else "characters"
                raise SchemaViolationError(
                    f"Attribute '{key}' exceeds maximum length of {attribute.size} {unit}",
                    attribute=key,
                )
        elif attribute.type is AttributeType.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                raise SchemaViolationError(f"Attribute '{key}' must be an integer", attribute=key)
        values[key] = value
    return values


def _filter_clause(schema: _CollectionSchema, query: Filter) -> tuple[str, _SqlParams]:
    column = schema.column(query.attribute)
    if isinstance(query, Equal):
        if query.value is None:
            return f"{column} IS NULL", []
        return f"{column} = ?", [query.value]
    if isinstance(query, LessThan):
        return f"{column} < ?", [query.value]
    if isinstance(query, InSet):
        if not query.values:
            return "0", []
        placeholders = ", ".join("?" for _ in query.values)
        return f"{column} IN ({placeholders})", list(query.values)
    raise StoreOperationError(f"Unsupported filter: {query!r}")


def _read_permission_clause(ctx: PermissionContext) -> tuple[str, _SqlParams]:
    tokens: _SqlParams = [ANY_ROLE, *ctx.roles]
    placeholders = ", ".join("?" for _ in tokens)
    return (
        f"EXISTS (SELECT 1 FROM json_each(_read) WHERE json_each.value IN ({placeholders}))",
        tokens,
    )


def _after_clause(column: str, value: object, direction: OrderType) -> tuple[str, _SqlParams]:
    # SQLite sorts NULL lowest: first when ascending, last when descending.
    if direction is OrderType.DESC:
        if value is None:
            return "0", []
        return f"({column} < ? OR {column} IS NULL)", [value]
    if value is None:
        return f"{column} IS NOT NULL", []
    return f"{column} > ?", [value]


def _keyset_clause(
    orders: Sequence[tuple[str, OrderType]],
    values: Sequence[object],
) -> tuple[str, _SqlParams]:
    branches: list[str] = []
    params: _SqlParams = []
    for position, (column, direction) in enumerate(orders):
        parts: list[str] = []
        for previous, _ in orders[:position]:
            parts.append(f"{previous} IS ?")
        params.extend(values[:position])
        after_sql, after_params = _after_clause(column, values[position], direction)
        parts.append(after_sql)
        params.extend(after_params)
        branches.append("(" + " AND ".join(parts) + ")")
    return "(" + " OR ".join(branches) + ")", params


class SqliteStore(DocumentStore):
    def __init__(self, path: str, wal: bool = True) -> None:
        if path != MEMORY_DATABASE:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreOperationError(f"Failed to open store at {path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        self._schemas: dict[str, _CollectionSchema] = {}
        if wal and path != MEMORY_DATABASE:
            try:
                self._conn.execute("PRAGMA journal_mode=WAL")
            except sqlite3.Error as exc:
                self._conn.close()
                raise StoreOperationError(f"Failed to enable WAL at {path}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def exists(self) -> bool:
        with self._lock:
            return self._exists()

    def create(self) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {_METADATA_TABLE} (
                        name TEXT PRIMARY KEY,
                        attributes TEXT NOT NULL,
                        indexes TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                raise StoreOperationError(f"Failed to create store: {exc}") from exc

    def create_collection(
        self,
        name: str,
        attributes: Sequence[AttributeSpec],
        indexes: Sequence[IndexSpec],
    ) -> None:
        _check_identifier(name, "collection")
        specs: dict[str, AttributeSpec] = {}
        for attribute in attributes:
            _check_identifier(attribute.key, "attribute")
            if attribute.key in specs:
                raise SchemaViolationError(
                    f"Duplicate attribute '{attribute.key}'", attribute=attribute.key
                )
            specs[attribute.key] = attribute
        for index in indexes:
            _check_identifier(index.key, "index")
            if not index.attributes:
                raise SchemaViolationError(f"Index '{index.key}' has no attributes")
            for key in index.attributes:
                if key not in specs:
                    raise SchemaViolationError(
                        f"Index '{index.key}' references unknown attribute '{key}'",
                        attribute=key,
                    )

        columns = "".join(
            f',\n"{attribute.key}" {_COLUMN_TYPES[attribute.type]}' for attribute in attributes
        )
        with self._lock:
            if self._load_schema(name) is not None:
                raise SchemaViolationError(f"Collection '{name}' already exists")
            try:
                self._conn.execute("BEGIN")
                self._conn.execute(
                    f"""
                    CREATE TABLE "{name}" (
                        _seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        _uid TEXT NOT NULL UNIQUE,
                        _read TEXT NOT NULL,
                        _write TEXT NOT NULL{columns}
                    )
                    """
                )
                for index in indexes:
                    index_columns = ", ".join(f'"{key}"' for key in index.attributes)
                    self._conn.execute(
                        f'CREATE INDEX "{name}_{index.key}" ON "{name}" ({index_columns})'
                    )
                self._conn.execute(
                    f"""
                    INSERT INTO {_METADATA_TABLE} (name, attributes, indexes, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        name,
                        json.dumps([_attribute_to_json(a) for a in attributes]),
                        json.dumps([_index_to_json(i) for i in indexes]),
                        utc_now_iso(),
                    ),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreOperationError(f"Failed to create collection '{name}': {exc}") from exc
            self._schemas[name] = _CollectionSchema(name=name, attributes=specs)

    def create_document(
        self,
        collection: str,
        document: Mapping[str, Any],
        grant: AccessGrant | None = None,
    ) -> Document:
        read = _permission_list(document, READ_KEY)
        write = _permission_list(document, WRITE_KEY)
        with self._lock:
            schema = self._schema(collection)
            values = _validate_document(schema, document)
            if not self._bypassed(grant) and not get_permission_context().allows(write):
                raise AuthorizationError(
                    f"Missing write permission for new document in '{collection}'"
                )
            document_id = document.get(ID_KEY) or uuid.uuid4().hex
            columns = ["_uid", "_read", "_write", *(schema.column(key) for key in values)]
            placeholders = ", ".join("?" for _ in columns)
            params: _SqlParams = [document_id, json.dumps(read), json.dumps(write), *values.values()]
            try:
                self._conn.execute(
                    f"INSERT INTO {schema.table} ({', '.join(columns)}) VALUES ({placeholders})",
                    params,
                )
                self._conn.commit()
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise SchemaViolationError(f"Document rejected by '{collection}': {exc}") from exc
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreOperationError(
                    f"Failed to create document in '{collection}': {exc}"
                ) from exc
        return {ID_KEY: document_id, READ_KEY: read, WRITE_KEY: write, **values}

    def find(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        order_attributes: Sequence[str] = (),
        order_types: Sequence[OrderType] = (),
        order_after: Mapping[str, Any] | None = None,
        grant: AccessGrant | None = None,
    ) -> list[Document]:
        if limit < 0 or offset < 0:
            raise StoreOperationError("limit and offset must be non-negative")
        with self._lock:
            schema = self._schema(collection)
            clauses, params = self._where(schema, filters, grant)

            orders: list[tuple[str, OrderType]] = []
            for position, attribute in enumerate(order_attributes):
                direction = (
                    OrderType(order_types[position])
                    if position < len(order_types)
                    else OrderType.ASC
                )
                orders.append((schema.column(attribute), direction))
            if orders:
                tie_break = orders[-1][1]
            else:
                tie_break = OrderType(order_types[0]) if order_types else OrderType.ASC
            orders.append(("_seq", tie_break))

            try:
                if order_after is not None:
                    cursor_values = self._cursor_values(schema, order_after, orders)
                    keyset_sql, keyset_params = _keyset_clause(orders, cursor_values)
                    clauses.append(keyset_sql)
                    params.extend(keyset_params)

                where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
                order_by = ", ".join(f"{column} {direction.value}" for column, direction in orders)
                rows = self._conn.execute(
                    f"SELECT * FROM {schema.table}{where} ORDER BY {order_by} LIMIT ? OFFSET ?",
                    [*params, limit, offset],
                ).fetchall()
            except sqlite3.Error as exc:
                raise StoreOperationError(f"Failed to query '{collection}': {exc}") from exc
        return [self._row_to_document(schema, row) for row in rows]

    def count(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        grant: AccessGrant | None = None,
    ) -> int:
        with self._lock:
            schema = self._schema(collection)
            clauses, params = self._where(schema, filters, grant)
            where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
            try:
                row = self._conn.execute(
                    f"SELECT COUNT(*) FROM {schema.table}{where}", params
                ).fetchone()
            except sqlite3.Error as exc:
                raise StoreOperationError(f"Failed to count '{collection}': {exc}") from exc
        return int(row[0])

    def delete_document(
        self,
        collection: str,
        document_id: str,
        grant: AccessGrant | None = None,
    ) -> bool:
        with self._lock:
            schema = self._schema(collection)
            try:
                if not self._bypassed(grant):
                    row = self._conn.execute(
                        f"SELECT _write FROM {schema.table} WHERE _uid = ?", (document_id,)
                    ).fetchone()
                    if row is None:
                        return False
                    if not get_permission_context().allows(json.loads(row["_write"])):
                        raise AuthorizationError(
                            f"Missing write permission for document '{document_id}'"
                        )
                cursor = self._conn.execute(
                    f"DELETE FROM {schema.table} WHERE _uid = ?", (document_id,)
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreOperationError(
                    f"Failed to delete document '{document_id}' from '{collection}': {exc}"
                ) from exc
        return cursor.rowcount == 1

    # Helpers below expect self._lock to be held.

    def _exists(self) -> bool:
        try:
            row = self._conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
                (_METADATA_TABLE,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreOperationError(f"Failed to inspect store: {exc}") from exc
        return row is not None

    def _load_schema(self, name: str) -> _CollectionSchema | None:
        cached = self._schemas.get(name)
        if cached is not None:
            return cached
        if not self._exists():
            raise StoreNotReadyError("Store has not been created")
        try:
            row = self._conn.execute(
                f"SELECT attributes FROM {_METADATA_TABLE} WHERE name = ?", (name,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreOperationError(f"Failed to load collection '{name}': {exc}") from exc
        if row is None:
            return None
        specs = {
            item["key"]: AttributeSpec(
                key=item["key"],
                type=AttributeType(item["type"]),
                size=item["size"],
                size_in_bytes=item.get("size_in_bytes", False),
                required=item["required"],
            )
            for item in json.loads(row["attributes"])
        }
        schema = _CollectionSchema(name=name, attributes=specs)
        self._schemas[name] = schema
        return schema

    def _schema(self, name: str) -> _CollectionSchema:
        schema = self._load_schema(name)
        if schema is None:
            raise StoreOperationError(f"Collection '{name}' not found")
        return schema

    def _bypassed(self, grant: AccessGrant | None) -> bool:
        if grant is None:
            return False
        if not grant.active:
            raise AuthorizationError(f"Access grant {grant.grant_id} has been revoked")
        return True

    def _where(
        self,
        schema: _CollectionSchema,
        filters: Sequence[Filter],
        grant: AccessGrant | None,
    ) -> tuple[list[str], _SqlParams]:
        clauses: list[str] = []
        params: _SqlParams = []
        for query in filters:
            sql, query_params = _filter_clause(schema, query)
            clauses.append(sql)
            params.extend(query_params)
        if not self._bypassed(grant):
            sql, permission_params = _read_permission_clause(get_permission_context())
            clauses.append(sql)
            params.extend(permission_params)
        return clauses, params

    def _cursor_values(
        self,
        schema: _CollectionSchema,
        order_after: Mapping[str, Any],
        orders: Sequence[tuple[str, OrderType]],
    ) -> list[object]:
        cursor_id = order_after.get(ID_KEY)
        if not cursor_id:
            raise StoreOperationError("Cursor document has no '$id'")
        columns = ", ".join(column for column, _ in orders)
        row = self._conn.execute(
            f"SELECT {columns} FROM {schema.table} WHERE _uid = ?", (cursor_id,)
        ).fetchone()
        if row is None:
            raise StoreOperationError(f"Cursor document '{cursor_id}' not found")
        return list(row)

    @staticmethod
    def _row_to_document(schema: _CollectionSchema, row: sqlite3.Row) -> Document:
        document: Document = {
            ID_KEY: row["_uid"],
            READ_KEY: json.loads(row["_read"]),
            WRITE_KEY: json.loads(row["_write"]),
        }
        for key in schema.attributes:
            document[key] = row[key]
        return document
