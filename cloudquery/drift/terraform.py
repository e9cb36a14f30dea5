"""Drift detection between Terraform state and fetched cloud resources."""

from __future__ import annotations

import fnmatch
import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from tabulate import tabulate

from cloudquery.drift.config import IACConfig, ResourceConfig
from cloudquery.drift.model import Resource, ResourceList, Result
from cloudquery.drift.query import (
    ID_SEPARATOR,
    QueryError,
    Select,
    handle_filters,
    handle_identifiers,
    handle_subresource,
    query_into_resource_list,
)
from cloudquery.drift.table import TraversedTable, ValueType
from cloudquery.tfstate import Data, Instance, Mode

TF_ID_ATTRIBUTE = "id"
ROOT_PATH_PREFIX = "root."

_log = logging.getLogger(__name__)

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_RFC3339 = re.compile(
    r"(\d{4}-\d{2}-\d{2})T(\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)
_GO_DEFAULT_TIME = re.compile(
    r"(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})(?:\.\d+)? ([+-]\d{4}) [A-Za-z]+"
)


class TFStates(list):
    """A list of loaded Terraform states."""

    def find_type(self, tf_type: str, tf_mode: str) -> list[Instance]:
        """All instances of the given type, limited to a mode unless it is empty."""
        return [
            instance
            for data in self
            for resource in data.state.resources
            if (not tf_mode or resource.mode == tf_mode) and resource.type == tf_type
            for instance in resource.instances
        ]


@dataclass
class Attribute:
    id: str
    sql: str = ""
    type: ValueType = ValueType.INVALID
    tf_name: str = ""
    unordered: bool = False


class AttrList(list):
    """A list of compared attributes."""

    def sqls(self) -> list[str]:
        return [a.sql for a in self]

    def type_of(self, attr_id: str) -> ValueType:
        return next((a.type for a in self if a.id == attr_id), ValueType.INVALID)


def _format(value: Any) -> str:
    """Render a value the way the default value formatting of the engine does."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_format(v) for v in value) + "]"
    if isinstance(value, Mapping):
        return "map[" + " ".join(f"{k}:{_format(value[k])}" for k in sorted(value)) + "]"
    return str(value)


def _type_name(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float64"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "[]interface {}"
    if isinstance(value, Mapping):
        return "map[string]interface {}"
    return type(value).__name__


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return _format(value) in _TRUE_WORDS
    if isinstance(value, str):
        return value in _TRUE_WORDS
    return False


def _apply_modifier(name: str, arg: str | None, value: Any) -> tuple[Any, bool]:
    if name == "this":
        return value, True
    if name == "reverse":
        if isinstance(value, list):
            return list(reversed(value)), True
        if isinstance(value, dict):
            return dict(reversed(list(value.items()))), True
        return value, True
    if name == "keys" and isinstance(value, dict):
        return list(value), True
    if name == "values" and isinstance(value, dict):
        return list(value.values()), True
    if name == "inverse":
        return value is False, True
    if name == "iftrue":
        if _parse_bool(value):
            return ("" if arg is None else arg), True
        return None, False
    return None, False


def _child(value: Any, key: str) -> tuple[Any, bool]:
    if isinstance(value, dict):
        if key in value:
            return value[key], True
        if "*" in key or "?" in key:
            for name, item in value.items():
                if fnmatch.fnmatchcase(name, key):
                    return item, True
        return None, False
    if isinstance(value, list) and key.isdigit() and int(key) < len(value):
        return value[int(key)], True
    return None, False


def _get_path(value: Any, path: str) -> tuple[Any, bool]:
    """Evaluate a dotted attribute path with "#" counts/projections and "@" modifiers."""
    i, n = 0, len(path)
    while i < n:
        if path[i] == "@":
            j = i + 1
            while j < n and path[j] not in ":.|":
                j += 1
            name, arg = path[i + 1 : j], None
            if j < n and path[j] == ":":
                if path.startswith('"', j + 1):
                    arg, j = json.JSONDecoder().raw_decode(path, j + 1)
                else:
                    k = j + 1
                    while k < n and path[k] not in ".|":
                        k += 1
                    arg, j = path[j + 1 : k], k
            value, ok = _apply_modifier(name, arg, value)
            if not ok:
                return None, False
            i = j + 1
            continue

        chars: list[str] = []
        j = i
        while j < n and path[j] not in ".|":
            if path[j] == "\\" and j + 1 < n:
                chars.append(path[j + 1])
                j += 2
                continue
            chars.append(path[j])
            j += 1
        key = "".join(chars)

        if key == "#" and isinstance(value, list):
            if j >= n:
                return len(value), True
            rest = path[j + 1 :]
            projected = []
            for element in value:
                item, ok = _get_path(element, rest)
                if ok:
                    projected.append(item)
            return projected, True

        value, ok = _child(value, key)
        if not ok:
            return None, False
        i = j + 1
    return value, True


def _parse_time(text: str) -> datetime | None:
    try:
        match = _RFC3339.fullmatch(text)
        if match:
            date, clock, fraction, zone = match.groups()
            micro = ("." + (fraction + "000000")[:6]) if fraction else ""
            zone = "+00:00" if zone == "Z" else zone
            return datetime.fromisoformat(f"{date}T{clock}{micro}{zone}")
        match = _GO_DEFAULT_TIME.fullmatch(text)
        if match:
            return datetime.strptime(f"{match[1]} {match[2]}", "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        return None
    return None


def parse_terraform_attribute(value: Any, value_type: ValueType) -> Any:
    """Normalise a state value for comparison; timestamps become Unix seconds."""
    if value is None:
        return None
    if value_type is ValueType.TIMESTAMP:
        parsed = _parse_time(value) if isinstance(value, str) else None
        if parsed is None:
            return value
        return str(math.floor(parsed.timestamp()))
    return value


def parse_terraform_instance(
    instance: Instance, identifiers: Sequence[str], alist: AttrList, path: str
) -> ResourceList:
    """Turn a state instance into resources, one per element under path if given."""
    root = instance.attributes
    if path:
        elements, _ = _get_path(root, path)
        if not isinstance(elements, list):
            raise ValueError(f"invalid path {path}: not an array")
    else:
        elements = [root]

    resources = []
    for element in elements:
        if not isinstance(element, dict):
            raise ValueError(f"invalid array element: not an object: {_type_name(element)}")

        def lookup(name: str, element: Any = element) -> tuple[Any, bool]:
            if name.startswith(ROOT_PATH_PREFIX):
                return _get_path(root, name[len(ROOT_PATH_PREFIX) :])
            return _get_path(element, name)

        id_values = [
            _format(parse_terraform_attribute(lookup(name)[0], alist.type_of(name)))
            for name in identifiers
        ]
        attributes: list[Any] = []
        for attr in alist:
            value, found = lookup(attr.tf_name)
            attributes.append(parse_terraform_attribute(value, attr.type) if found else None)
        resources.append(
            Resource(id=ID_SEPARATOR.join(id_values), attributes=attributes, tags=None)
        )
    return ResourceList(resources)


def as_resource_list(
    instances: Iterable[Instance],
    identifiers: Sequence[str],
    alist: AttrList,
    path: str,
) -> ResourceList:
    """Resources for all instances; the "id" attribute identifies them by default."""
    identifiers = list(identifiers) or [TF_ID_ATTRIBUTE]
    return ResourceList(
        resource
        for instance in instances
        for resource in parse_terraform_instance(instance, identifiers, alist, path)
    )


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def _deep_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(_deep_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_deep_equal(a[k], b[k]) for k in a)
    if _is_empty(a) and _is_empty(b) and type(a) is type(b):
        return True
    return type(a) is type(b) and a == b


def _string_as_map(value: Any) -> tuple[Any, bool]:
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return None, False
        if parsed is None or isinstance(parsed, dict):
            return parsed, True
    return None, False


def _parse_arn(text: str) -> list[str] | None:
    parts = text.split(":", 5)
    if len(parts) < 6 or parts[0] != "arn" or not parts[1] or not parts[2] or not parts[5]:
        return None
    return parts


def equals(a: Any, b: Any) -> bool:
    """Loose equality of a cloud value and a state value."""
    if isinstance(b, dict):
        parsed, ok = _string_as_map(a)
        if ok:
            a = parsed
    elif isinstance(a, dict):
        parsed, ok = _string_as_map(b)
        if ok:
            b = parsed

    if _is_empty(a) and _is_empty(b):
        return True

    a_text, b_text = _format(a), _format(b)
    if a_text == b_text:
        return True

    if a_text.startswith("arn:aws:") and b_text.startswith("arn:aws:"):
        a_arn, b_arn = _parse_arn(a_text), _parse_arn(b_text)
        if a_arn is None or b_arn is None:
            return False
        if not a_arn[3] or not b_arn[3]:
            a_arn[3] = b_arn[3] = ""
        if not a_arn[4] or not b_arn[4]:
            a_arn[4] = b_arn[4] = ""
        return a_arn == b_arn

    return _deep_equal(a, b)


def equal_sets(a: Sequence[Any] | None, b: Sequence[Any] | None) -> bool:
    """Compare two lists regardless of order."""
    left = sorted(a or [], key=_format)
    right = sorted(b or [], key=_format)
    return len(left) == len(right) and all(_deep_equal(x, y) for x, y in zip(left, right))


def equal_attributes(
    a: Sequence[Any] | None, b: Sequence[Any] | None, alist: Sequence[Attribute]
) -> bool:
    a, b = a or [], b or []
    if len(a) != len(b):
        return False
    for left, right, attr in zip(a, b, alist):
        if attr.unordered:
            if not equal_sets(left, right):
                return False
        elif not equals(left, right):
            return False
    return True


def _attribute_sql(name: str, value_type: ValueType) -> str:
    if value_type is ValueType.STRING:
        return f"""COALESCE("c"."{name}",'')"""
    if value_type is ValueType.TIMESTAMP:
        return f"""EXTRACT(EPOCH FROM DATE_TRUNC('second', "c"."{name}"))::VARCHAR"""
    return f'"c"."{name}"'


def drift_terraform(
    conn: Any,
    cloud_name: str,
    cloud_table: TraversedTable,
    res_name: str,
    resources: Mapping[str, ResourceConfig],
    iac_data: IACConfig,
    states: Iterable[Data],
    run_params: Any,
    account_ids: Sequence[str],
) -> Result:
    """Compare one resource type between the cloud tables and the Terraform states."""
    res_data = resources[res_name]
    deep_mode = bool(run_params.force_deep) or bool(res_data.deep)
    sets = set(res_data.sets)

    alist = AttrList()
    tag_sql: str | None = None
    for name in res_data.attributes:
        column = cloud_table.column(name)
        if column is None:
            raise QueryError(f'attribute "{name}" is not a column of table "{cloud_table.name}"')
        attr = Attribute(
            id=name,
            sql=_attribute_sql(name, column.type),
            type=column.type,
            tf_name=iac_data.attribute_mapping.get(name) or name,
            unordered=name in sets,
        )
        alist.append(attr)
        if name == "tags" and column.type is ValueType.JSON:
            tag_sql = attr.sql

    if tag_sql is None:
        tag_sql = "NULL"
        if res_data.acl.has_tag_filters():
            _log.warning("tag based filtering not possible on this resource type: %s", res_name)

    tf_mode = Mode(run_params.tf_mode)
    if not tf_mode.valid():
        raise ValueError(f'invalid tf mode "{run_params.tf_mode}"')

    tf_resources = as_resource_list(
        TFStates(states).find_type(iac_data.type, tf_mode),
        iac_data.identifiers,
        alist,
        iac_data.path,
    )

    if not deep_mode or not alist:
        attr_sql = "NULL"
    else:
        attr_sql = "JSON_BUILD_ARRAY(" + ",".join(alist.sqls()) + ")"

    select = Select(
        cloud_table.name,
        "c",
        (handle_identifiers(res_data.identifiers), f'{attr_sql} AS "attlist"', f'{tag_sql} AS "tags"'),
    )
    select = handle_subresource(select, cloud_table, resources, account_ids)
    existing = query_into_resource_list(conn, select)
    existing_ids = {r.id for r in existing}
    tf_map = {r.id: r.attributes for r in tf_resources}
    skip = res_data.acl.should_skip

    result = Result()
    result.missing = ResourceList(
        r for r in tf_resources if not skip(r) and r.id not in existing_ids
    )

    filtered = query_into_resource_list(conn, handle_filters(select, res_data))
    result.extra = ResourceList(r for r in filtered if not skip(r) and r.id not in tf_map)

    matched = [r for r in existing if not skip(r) and r.id in tf_map]
    if not deep_mode:
        result.equal = ResourceList(matched)
    else:
        result.deep_equal = ResourceList(
            r for r in matched if equal_attributes(tf_map[r.id], r.attributes, alist)
        )
        result.different = ResourceList(
            r for r in matched if not equal_attributes(tf_map[r.id], r.attributes, alist)
        )
        if run_params.debug and result.different:
            render_drift_table(res_name, resources, cloud_name, alist, result.different, tf_resources)

    return result


def render_drift_table(
    res_name: str,
    resources: Mapping[str, ResourceConfig],
    cloud_name: str,
    alist: Sequence[Attribute],
    different: Iterable[Resource],
    tf_resources: Iterable[Resource],
) -> None:
    """Print, for every drifted resource, the differing and the matching attributes."""
    res_data = resources[res_name]
    tf_resources = list(tf_resources)
    tf_map = {r.id: r.attributes for r in tf_resources}
    cloud_map = {r.id: r.attributes for r in different}
    cloud = cloud_name.upper()
    headers = [f"{cloud} EXPR", f"{cloud} VAL", "TERRAFORM VAL", "TERRAFORM EXPR"]

    for key in (r.id for r in tf_resources):
        if key not in cloud_map:
            continue
        cloud_attrs, tf_attrs = cloud_map[key], tf_map[key] or []
        print(f"DIFF RESOURCE: {res_name}:{key}")
        rows, matching = [], []
        for i, tf_value in enumerate(tf_attrs):
            cloud_value = cloud_attrs[i]
            if not equal_attributes([cloud_value], [tf_value], [alist[i]]):
                cloud_text, tf_text = _format(cloud_value), _format(tf_value)
                if cloud_text == tf_text:
                    cloud_text += f" {_type_name(cloud_value)}"
                    tf_text += f" {_type_name(tf_value)}"
                rows.append([alist[i].sql, cloud_text, tf_text, alist[i].tf_name])
            else:
                matching.append([res_data.attributes[i], _format(cloud_value)])
        print(tabulate(rows, headers=headers, tablefmt="grid"))
        print("Matching attributes " + ", ".join(f'"{name}"' for name, _ in matching))
        print(tabulate(matching, headers=["ATTRIBUTE", "MATCHING VALUE"], tablefmt="grid"))