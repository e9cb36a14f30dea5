"""Provider table schemas and their parent/child traversal."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

PARENT_ID_RESOLVER = "schema.ParentIdResolver"
AWS_ACCOUNT_RESOLVER = "github.com/cloudquery/cq-provider-aws/client.ResolveAWSAccount"
AWS_REGION_RESOLVER = "github.com/cloudquery/cq-provider-aws/client.ResolveAWSRegion"

_AUTO_IGNORED_RESOLVERS = frozenset(
    {PARENT_ID_RESOLVER, AWS_ACCOUNT_RESOLVER, AWS_REGION_RESOLVER}
)


class ValueType(Enum):
    """Column value types as reported by a provider."""

    INVALID = "invalid"
    BOOL = "bool"
    SMALL_INT = "smallint"
    INT = "int"
    BIG_INT = "bigint"
    FLOAT = "float"
    UUID = "uuid"
    STRING = "string"
    BYTE_ARRAY = "bytearray"
    STRING_ARRAY = "stringarray"
    INT_ARRAY = "intarray"
    TIMESTAMP = "timestamp"
    JSON = "json"
    UUID_ARRAY = "uuidarray"
    INET = "inet"
    INET_ARRAY = "inetarray"
    CIDR = "cidr"
    CIDR_ARRAY = "cidrarray"
    MAC_ADDR = "macaddr"
    MAC_ADDR_ARRAY = "macaddrarray"


@dataclass(frozen=True)
class ResolverMeta:
    name: str
    builtin: bool = False


@dataclass
class Column:
    name: str
    type: ValueType = ValueType.INVALID
    resolver: ResolverMeta | None = None


@dataclass
class Table:
    name: str
    columns: list[Column] = field(default_factory=list)
    primary_keys: list[str] = field(default_factory=list)
    relations: list[Table] = field(default_factory=list)

    def column(self, name: str) -> Column | None:
        return next((c for c in self.columns if c.name == name), None)


@dataclass
class ProviderSchema:
    name: str
    version: str = ""
    resource_tables: dict[str, Table] = field(default_factory=dict)


@dataclass(eq=False)
class TraversedTable:
    """A table together with the table it hangs under, if any."""

    table: Table
    parent: TraversedTable | None = None

    @property
    def name(self) -> str:
        return self.table.name

    @property
    def columns(self) -> list[Column]:
        return self.table.columns

    def column(self, name: str) -> Column | None:
        """Return the column with the given name, or None."""
        return self.table.column(name)

    def resolvers(self, name: str, builtin: bool) -> list[str]:
        """Names of the columns resolved by the named resolver."""
        return [
            c.name
            for c in self.table.columns
            if c.resolver is not None
            and c.resolver.name == name
            and c.resolver.builtin == builtin
        ]

    def account_id_column(self) -> str:
        cols = self.resolvers(AWS_ACCOUNT_RESOLVER, False)
        return cols[0] if cols else ""

    def parent_id_column(self) -> str:
        cols = self.resolvers(PARENT_ID_RESOLVER, True)
        return cols[0] if cols else ""

    def auto_ignore_columns(self) -> list[str]:
        """Columns that are bookkeeping only: parent IDs, accounts and regions."""
        return [
            c.name
            for c in self.table.columns
            if c.resolver is not None and c.resolver.name in _AUTO_IGNORED_RESOLVERS
        ]

    def non_cq_columns(self) -> list[str]:
        ignored = set(self.auto_ignore_columns())
        return [c.name for c in self.table.columns if c.name not in ignored]

    def non_cq_primary_keys(self) -> list[str]:
        ignored = set(self.auto_ignore_columns())
        return [pk for pk in self.table.primary_keys if pk not in ignored]


def traverse_resource_table(resources: Mapping[str, Table]) -> dict[str, TraversedTable]:
    """Index every table with its parent.

    Top-level tables are reachable by resource ID and by table name; nested
    tables only by table name.
    """
    table_map: dict[str, TraversedTable] = {}

    def visit(table: Table, parent: TraversedTable | None) -> None:
        node = TraversedTable(table=table, parent=parent)
        table_map[table.name] = node
        for relation in table.relations:
            visit(relation, node)

    for resource_id, table in resources.items():
        table_map[resource_id] = TraversedTable(table=table)
        visit(table, None)

    return table_map