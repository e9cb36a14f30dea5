"""SQL building and querying of cloud resources for drift detection."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Mapping, Sequence

from cloudquery.drift.config import ResourceConfig
from cloudquery.drift.model import Resource, ResourceList
from cloudquery.drift.table import TraversedTable

ID_SEPARATOR = "|"
NULL_ID = "<null id>"
UNDEFINED_TABLE = "42P01"

_ID_RE = re.compile(r"^\$\{sql:(.+?)\}$", re.M | re.S)

_log = logging.getLogger(__name__)


class QueryError(Exception):
    """Raised when a cloud query cannot be built or fails to run."""


class TablesMissingError(QueryError):
    """Raised when the provider tables have not been created yet."""


def quote_identifier(name: str) -> str:
    """Quote a possibly qualified identifier: a.b becomes "a"."b"."""
    return ".".join('"' + part.replace('"', '""') + '"' for part in name.split("."))


def _literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return "(" + ", ".join(_literal(v) for v in value) + ")"
    return "'" + str(value).replace("'", "''") + "'"


@dataclass(frozen=True)
class Select:
    """An immutable SELECT statement; each builder method returns a new one."""

    table: str
    alias: str = "c"
    columns: tuple[str, ...] = ()
    joins: tuple[str, ...] = ()
    conditions: tuple[str, ...] = ()

    def where(self, condition: str, *args: Any) -> Select:
        """Add a condition; each "?" is replaced by the next argument as a literal.

        A sequence argument becomes a parenthesised list, suitable for IN.
        """
        if args:
            pieces = condition.split("?")
            if len(pieces) != len(args) + 1:
                raise QueryError(
                    f"condition {condition!r} expects {len(pieces) - 1} arguments, got {len(args)}"
                )
            condition = pieces[0] + "".join(
                _literal(arg) + piece for arg, piece in zip(args, pieces[1:])
            )
        return replace(self, conditions=self.conditions + (condition,))

    def join(self, table: str, alias: str, condition: str) -> Select:
        clause = (
            f"INNER JOIN {quote_identifier(table)} AS {quote_identifier(alias)} ON ({condition})"
        )
        return replace(self, joins=self.joins + (clause,))

    def to_sql(self) -> str:
        columns = ", ".join(self.columns) or "*"
        parts = [
            f"SELECT {columns} FROM {quote_identifier(self.table)} AS {quote_identifier(self.alias)}"
        ]
        parts.extend(self.joins)
        if self.conditions:
            parts.append("WHERE " + " AND ".join(f"({c})" for c in self.conditions))
        return " ".join(parts)


def handle_identifiers(identifiers: Sequence[str]) -> str:
    """Build the id column expression from one or more identifiers.

    Identifiers of the form ${sql:<expr>} are used verbatim; plain names are
    qualified with the cloud table alias. Several identifiers are joined with
    the id separator.
    """
    if not identifiers:
        raise QueryError("no identifiers to match")

    args: list[str] = []
    for i, ident in enumerate(identifiers):
        using_sql = False
        match = _ID_RE.search(ident)
        if match:
            ident = match.group(1)
            using_sql = True
        if "${" in ident:
            raise QueryError(f"identifier {i} still contains variable")
        if not using_sql and "." not in ident:
            ident = 'c."' + ident + '"'
        args.append(ident)

    if len(args) == 1:
        return args[0] + " AS id"
    separator = "'" + ID_SEPARATOR + "'"
    return "CONCAT(" + f",{separator},".join(args) + ") AS id"


def handle_subresource(
    select: Select,
    table: TraversedTable,
    resources: Mapping[str, ResourceConfig | None],
    account_ids: Sequence[str],
) -> Select:
    """Join parent tables up to the top and filter by account IDs."""
    parent_column = table.parent_id_column()

    if not parent_column:
        if table.parent is not None:
            _log.error("parent set but no parentColumn for table %s", table.name)
        if account_ids:
            account_column = table.account_id_column()
            if account_column:
                select = select.where(
                    quote_identifier("c." + account_column) + " IN ?", list(account_ids)
                )
        return select

    if table.parent is None:
        _log.warning("parentColumn set but no parent for table %s", table.name)
        return select

    counter = 0
    parent_name = "parent"
    child_name = "c"
    current = table
    while current.parent is not None:
        if resources.get(current.name) is None:
            _log.warning("Found parent but no resourceConfig for table %s", current.name)
            return select
        if counter > 0:
            parent_name = f"parent{counter}"
        select = select.join(
            current.parent.name,
            parent_name,
            f"{quote_identifier(parent_name + '.cq_id')} = "
            f"{quote_identifier(child_name + '.' + parent_column)}",
        )
        counter += 1
        child_name = parent_name
        current = current.parent
        parent_column = current.parent_id_column()

    if account_ids:
        account_column = current.account_id_column()
        select = select.where(
            quote_identifier(parent_name + "." + account_column) + " IN ?", list(account_ids)
        )
    return select


def handle_filters(select: Select, res: ResourceConfig) -> Select:
    """Add the resource's SQL filters as conditions."""
    for condition in res.filters:
        select = select.where(condition)
    return select


def _sqlstate(exc: BaseException) -> str | None:
    for attr in ("sqlstate", "pgcode", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, str):
            return value
    return None


def _json_value(value: Any) -> Any:
    if isinstance(value, (str, bytes, bytearray)):
        return json.loads(value)
    return value


def query_into_resource_list(conn: Any, select: Select) -> ResourceList:
    """Run the query on a DB-API connection and read id, attlist and tags rows."""
    sql = select.to_sql()
    _log.debug("generated query: %s", sql)
    try:
        cursor = conn.cursor()
        try:
            cursor.execute(sql)
            rows = cursor.fetchall()
            names = [d[0] for d in (cursor.description or ())]
        finally:
            close = getattr(cursor, "close", None)
            if close is not None:
                close()
    except Exception as exc:
        if _sqlstate(exc) == UNDEFINED_TABLE:
            raise TablesMissingError(
                f"cloud provider tables don't exist: Did you run `cloudquery fetch`? {exc}"
            ) from exc
        _log.warning("query failed with error: query=%s error=%s", sql, exc)
        raise QueryError(f"select failed: {exc}") from exc

    resources = []
    for row in rows:
        record = row if isinstance(row, Mapping) else dict(zip(names, row))
        row_id = record.get("id")
        resources.append(
            Resource(
                id=NULL_ID if row_id is None else str(row_id),
                attributes=_json_value(record.get("attlist")),
                tags=_json_value(record.get("tags")),
            )
        )
    return ResourceList(resources)