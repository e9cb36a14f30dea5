"""Terraform state (format version 4) loading and validation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import IO, Any


class StateError(ValueError):
    """Raised when a Terraform state file cannot be read."""


class UnsupportedStateVersion(StateError):
    """Raised when a state file uses a format version that is not supported."""


class Mode(str):
    """Resource mode of a state entry ("managed" or "data")."""

    MANAGED: Mode
    DATA: Mode

    def valid(self) -> bool:
        return self in (Mode.MANAGED, Mode.DATA)


Mode.MANAGED = Mode("managed")
Mode.DATA = Mode("data")


@dataclass
class OutputState:
    value: Any = None
    type: Any = None
    sensitive: bool = False


@dataclass
class Instance:
    attributes: Any = None
    schema_version: int = 0
    index_key: Any = None
    status: str = ""
    deposed: str = ""
    attributes_flat: dict[str, str] = field(default_factory=dict)
    sensitive_attributes: Any = None
    private: str = ""
    dependencies: list[str] = field(default_factory=list)
    create_before_destroy: bool = False


@dataclass
class Resource:
    mode: Mode = field(default_factory=lambda: Mode(""))
    type: str = ""
    name: str = ""
    provider: str = ""
    module: str = ""
    each: str = ""
    instances: list[Instance] = field(default_factory=list)


@dataclass
class State:
    version: str | None = None
    terraform_version: str = ""
    serial: int = 0
    lineage: str = ""
    outputs: dict[str, OutputState] = field(default_factory=dict)
    resources: list[Resource] = field(default_factory=list)


@dataclass
class Data:
    state: State = field(default_factory=State)


def _value(obj: dict, key: str, kind: type | tuple, default: Any) -> Any:
    value = obj.get(key)
    if value is None:
        return default
    if kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool) and value >= 0
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise StateError(f"invalid tf state file: {key!r} has an unexpected type")
    return value


def _object(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise StateError(f"invalid tf state file: {what} is not an object")
    return value


def _parse_instance(obj: Any) -> Instance:
    obj = _object(obj, "instance")
    flat = _value(obj, "attributes_flat", dict, {})
    if not all(isinstance(v, str) for v in flat.values()):
        raise StateError("invalid tf state file: 'attributes_flat' has an unexpected type")
    dependencies = _value(obj, "dependencies", list, [])
    if not all(isinstance(d, str) for d in dependencies):
        raise StateError("invalid tf state file: 'dependencies' has an unexpected type")
    return Instance(
        attributes=obj.get("attributes"),
        schema_version=_value(obj, "schema_version", int, 0),
        index_key=obj.get("index_key"),
        status=_value(obj, "status", str, ""),
        deposed=_value(obj, "deposed", str, ""),
        attributes_flat=dict(flat),
        sensitive_attributes=obj.get("sensitive_attributes"),
        private=_value(obj, "private", str, ""),
        dependencies=list(dependencies),
        create_before_destroy=_value(obj, "create_before_destroy", bool, False),
    )


def _parse_resource(obj: Any) -> Resource:
    obj = _object(obj, "resource")
    return Resource(
        mode=Mode(_value(obj, "mode", str, "")),
        type=_value(obj, "type", str, ""),
        name=_value(obj, "name", str, ""),
        provider=_value(obj, "provider", str, ""),
        module=_value(obj, "module", str, ""),
        each=_value(obj, "each", str, ""),
        instances=[_parse_instance(i) for i in _value(obj, "instances", list, [])],
    )


def _parse_output(obj: Any) -> OutputState:
    obj = _object(obj, "output")
    return OutputState(
        value=obj.get("value"),
        type=obj.get("type"),
        sensitive=_value(obj, "sensitive", bool, False),
    )


def _parse_state(obj: Any) -> State:
    if obj is None:
        return State()
    obj = _object(obj, "state")
    raw_version = obj.get("version")
    outputs = _value(obj, "outputs", dict, {})
    return State(
        version=None if raw_version is None else json.dumps(raw_version),
        terraform_version=_value(obj, "terraform_version", str, ""),
        serial=_value(obj, "serial", int, 0),
        lineage=_value(obj, "lineage", str, ""),
        outputs={name: _parse_output(out) for name, out in outputs.items()},
        resources=[_parse_resource(r) for r in _value(obj, "resources", list, [])],
    )


def load_state(reader: IO) -> Data:
    """Read a Terraform state document from a text or binary stream."""
    content = reader.read()
    try:
        obj = json.loads(content)
    except ValueError as exc:
        raise StateError(f"invalid tf state file: {exc}") from exc
    return Data(state=_parse_state(obj))


def validate_state_version(data: Data) -> str | None:
    """Check that the state is format version 4.

    Returns None when the version is 4, a warning message when the version is
    missing or unknown but still allowed, and raises UnsupportedStateVersion
    for versions 2 and 3.
    """
    version = data.state.version
    if version is None:
        return "unspecified tfstate version, allowing"
    if version == "4":
        return None
    if version in ("2", "3"):
        raise UnsupportedStateVersion(f"unsupported tfstate version {version}")
    return f"unknown tfstate version {version}, allowing"