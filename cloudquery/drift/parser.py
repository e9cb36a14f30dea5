"""Decoding of drift configuration bodies.

A body is a mapping in the shape of HCL's JSON syntax: attributes map to
values, and blocks map to an object (or a list of objects). Labelled blocks
map each label to its body. String values are templates: "${expr}"
interpolates an expression, "$${" stands for a literal "${", and a string
that is a single interpolation evaluates to the expression's value as is.
Expressions support variable traversal ("resource.Value.Name"), indexing,
string, number and boolean literals, lists and function calls.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping

from cloudquery.drift.config import (
    WILDCARD,
    BaseConfig,
    ConfigError,
    IACConfig,
    IACProvider,
    Placeholder,
    ProviderConfig,
    ResourceConfig,
    TerraformSourceConfig,
    parse_resource_selectors,
)
from cloudquery.versioning import VersionError, parse_constraints

_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_\-]*")
_NUMBER = re.compile(r"-?[0-9]+(?:\.[0-9]+)?")

_PROVIDER_ATTRIBUTES = frozenset({"version", "ignore_resources", "check_resources", "account_ids"})
_RESOURCE_ATTRIBUTES = frozenset(
    {
        "identifiers",
        "ignore_identifiers",
        "attributes",
        "ignore_attributes",
        "deep",
        "filters",
        "sets",
    }
)
_IAC_ATTRIBUTES = frozenset({"type", "path", "identifiers", "attribute_map"})
_TERRAFORM_ATTRIBUTES = frozenset({"backend", "files", "bucket", "keys", "region", "role_arn"})


def sql_expr(expr: str) -> str:
    """Wrap an SQL expression so that it is used verbatim as an identifier."""
    if not isinstance(expr, str):
        raise ConfigError("invalid arguments: single expression required")
    return "${sql:" + expr + "}"


def _resource_variable() -> dict[str, Any]:
    return {
        "Key": Placeholder.RESOURCE_KEY.token,
        "Value": {
            "Name": Placeholder.RESOURCE_NAME.token,
            "ColumnNames": [Placeholder.RESOURCE_COLUMN_NAMES.token],
            "Options": {"PrimaryKeys": [Placeholder.RESOURCE_OPTS_PRIMARY_KEYS.token]},
        },
    }


def _number_text(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _interpolate(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return _number_text(value)
    raise ConfigError(
        "Invalid template interpolation value: Cannot include the given value "
        "in a string template: string required."
    )


def _to_string(value: Any, name: str) -> str:
    try:
        return _interpolate(value)
    except ConfigError:
        raise ConfigError(
            f'Incorrect attribute value type: Inappropriate value for attribute "{name}": '
            "string required."
        ) from None


def _to_string_list(value: Any, name: str) -> list[str]:
    message = (
        f'Incorrect attribute value type: Inappropriate value for attribute "{name}": '
        "list of string required."
    )
    if not isinstance(value, (list, tuple)):
        raise ConfigError(message)
    try:
        return [_interpolate(item) for item in value]
    except ConfigError:
        raise ConfigError(message) from None


def _to_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if value in ("true", "false"):
        return value == "true"
    raise ConfigError(
        f'Incorrect attribute value type: Inappropriate value for attribute "{name}": '
        "bool required."
    )


def _find_close(text: str, start: int) -> int:
    depth = 0
    quoted = False
    i = start
    while i < len(text):
        ch = text[i]
        if quoted:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                quoted = False
        elif ch == '"':
            quoted = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            if depth == 0:
                return i
            depth -= 1
        i += 1
    raise ConfigError(f'Invalid template: unclosed interpolation in "{text}"')


class _Expression:
    """Evaluates a single expression against variables and functions."""

    def __init__(
        self,
        text: str,
        variables: Mapping[str, Any],
        functions: Mapping[str, Callable[..., Any]],
    ) -> None:
        self.text = text
        self.pos = 0
        self.variables = variables
        self.functions = functions

    def evaluate(self) -> Any:
        value = self._expr()
        if self._peek():
            raise self._error("unexpected character")
        return value

    def _error(self, message: str) -> ConfigError:
        return ConfigError(f'Invalid expression "{self.text}": {message}')

    def _peek(self) -> str:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _expect(self, ch: str) -> None:
        if self._peek() != ch:
            raise self._error(f'expected "{ch}"')
        self.pos += 1

    def _expr(self) -> Any:
        ch = self._peek()
        if ch == '"':
            return self._string()
        if ch == "[":
            self.pos += 1
            return self._sequence("]")
        number = _NUMBER.match(self.text, self.pos)
        if number:
            self.pos = number.end()
            text = number.group()
            return float(text) if "." in text else int(text)
        ident = _IDENT.match(self.text, self.pos)
        if not ident:
            raise self._error("expected an expression")
        name = ident.group()
        self.pos = ident.end()
        if name in ("true", "false"):
            return name == "true"
        if name == "null":
            return None
        if self._peek() == "(":
            self.pos += 1
            return self._call(name)
        if name not in self.variables:
            raise ConfigError(f'Unknown variable: There is no variable named "{name}".')
        return self._traverse(self.variables[name], name)

    def _sequence(self, closing: str) -> list[Any]:
        items: list[Any] = []
        if self._peek() == closing:
            self.pos += 1
            return items
        while True:
            items.append(self._expr())
            ch = self._peek()
            if ch == ",":
                self.pos += 1
                if self._peek() == closing:
                    self.pos += 1
                    return items
                continue
            self._expect(closing)
            return items

    def _call(self, name: str) -> Any:
        fn = self.functions.get(name)
        if fn is None:
            raise ConfigError(
                f'Call to unknown function: There is no function named "{name}".'
            )
        args = self._sequence(")")
        try:
            return fn(*args)
        except TypeError as exc:
            raise ConfigError(f'Invalid function call to "{name}": {exc}') from exc

    def _traverse(self, value: Any, path: str) -> Any:
        while True:
            ch = self._peek()
            if ch == ".":
                self.pos += 1
                ident = _IDENT.match(self.text, self.pos)
                if not ident:
                    raise self._error("expected an attribute name")
                attr = ident.group()
                self.pos = ident.end()
                if not isinstance(value, Mapping) or attr not in value:
                    raise ConfigError(
                        f'Unsupported attribute: "{path}" has no attribute "{attr}".'
                    )
                value = value[attr]
                path = f"{path}.{attr}"
            elif ch == "[":
                self.pos += 1
                index = self._expr()
                self._expect("]")
                try:
                    value = value[index]
                except (KeyError, IndexError, TypeError):
                    raise ConfigError(
                        f'Invalid index: cannot index "{path}" with {index!r}.'
                    ) from None
                path = f"{path}[{index!r}]"
            else:
                return value

    def _string(self) -> str:
        self.pos += 1
        chars: list[str] = []
        escapes = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\"}
        while self.pos < len(self.text):
            ch = self.text[self.pos]
            if ch == '"':
                self.pos += 1
                return "".join(chars)
            if ch == "\\" and self.pos + 1 < len(self.text):
                nxt = self.text[self.pos + 1]
                chars.append(escapes.get(nxt, "\\" + nxt))
                self.pos += 2
                continue
            chars.append(ch)
            self.pos += 1
        raise self._error("unterminated string")


@dataclass
class _Block:
    type: str
    labels: tuple[str, ...]
    body: Mapping[str, Any]

    @property
    def where(self) -> str:
        if self.labels:
            return f'{self.type} "{self.labels[0]}"'
        return self.type


def _expand_block(block_type: str, label_count: int, value: Any) -> Iterator[_Block]:
    items = value if isinstance(value, list) else [value]
    for item in items:
        if not isinstance(item, Mapping):
            raise ConfigError(f'Invalid block: "{block_type}" block must be an object')
        if label_count == 0:
            yield _Block(block_type, (), item)
            continue
        for label, inner in item.items():
            for body in inner if isinstance(inner, list) else [inner]:
                if not isinstance(body, Mapping):
                    raise ConfigError(
                        f'Invalid block: "{block_type} {label}" block must be an object'
                    )
                yield _Block(block_type, (label,), body)


class Parser:
    """Decodes drift configuration bodies into BaseConfig objects."""

    def __init__(
        self,
        variables: Mapping[str, Any] | None = None,
        functions: Mapping[str, Callable[..., Any]] | None = None,
    ) -> None:
        self.variables: dict[str, Any] = dict(variables or {})
        self.functions: dict[str, Callable[..., Any]] = {"sql": sql_expr}
        self.functions.update(functions or {})

    def _template(self, text: str) -> Any:
        pieces: list[str] = []
        i = 0
        while i < len(text):
            if text.startswith("$${", i):
                pieces.append("${")
                i += 3
                continue
            if text.startswith("${", i):
                end = _find_close(text, i + 2)
                value = _Expression(text[i + 2 : end], self.variables, self.functions).evaluate()
                if i == 0 and end == len(text) - 1:
                    return value
                pieces.append(_interpolate(value))
                i = end + 1
                continue
            pieces.append(text[i])
            i += 1
        return "".join(pieces)

    def _evaluate(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._template(value)
        if isinstance(value, (list, tuple)):
            return [self._evaluate(item) for item in value]
        if isinstance(value, Mapping):
            return {key: self._evaluate(item) for key, item in value.items()}
        return value

    def _decode_attr(
        self,
        attrs: Mapping[str, Any],
        name: str,
        convert: Callable[[Any, str], Any],
        errors: list[str],
        default: Any = None,
    ) -> Any:
        if name not in attrs:
            return default
        try:
            return convert(self._evaluate(attrs[name]), name)
        except ConfigError as exc:
            errors.extend(exc.messages)
            return default

    @staticmethod
    def _content(
        body: Any, attributes: frozenset[str], blocks: Mapping[str, int]
    ) -> tuple[dict[str, Any], list[_Block], list[str]]:
        attrs: dict[str, Any] = {}
        found: list[_Block] = []
        errors: list[str] = []
        if body is None:
            return attrs, found, errors
        if not isinstance(body, Mapping):
            return attrs, found, ["Invalid body: a block body must be an object"]
        for key, value in body.items():
            if key in attributes:
                attrs[key] = value
            elif key in blocks:
                try:
                    found.extend(_expand_block(key, blocks[key], value))
                except ConfigError as exc:
                    errors.extend(exc.messages)
            else:
                errors.append(
                    f'Unsupported argument: An argument named "{key}" is not expected here.'
                )
        return attrs, found, errors

    def decode(self, body: Mapping[str, Any] | None) -> BaseConfig:
        """Decode a configuration body; all problems are raised as one ConfigError."""
        _, blocks, errors = self._content(body, frozenset(), {"provider": 1, "terraform": 0})
        self.variables["resource"] = _resource_variable()
        config = BaseConfig()

        for block in blocks:
            if block.type == "terraform":
                source = self._decode_terraform_block(block, errors)
                if source is not None:
                    config.terraform = source
                continue

            prov = self._decode_provider_block(block, errors)
            if prov is None:
                continue
            if prov.name == WILDCARD:
                if config.wild_provider is not None:
                    errors.append(
                        'Duplicate block: There must be at most one block of "*" type provider'
                    )
                    continue
                if prov.version:
                    errors.append(
                        'Invalid attribute: version attribute is only valid for non-"*" providers'
                    )
                    continue
                if prov.account_ids:
                    errors.append(
                        'Invalid attribute: account_ids attribute is only valid for non-"*" providers'
                    )
                    continue
                config.wild_provider = prov
                continue

            if prov.version:
                try:
                    prov.version_constraints = parse_constraints(prov.version)
                except VersionError as exc:
                    errors.append(f"Invalid attribute: version attribute is invalid: {exc}")
                    continue
            config.providers.append(prov)

        if errors:
            raise ConfigError(*errors)
        return config

    def interpret(self, cfg: BaseConfig) -> None:
        """Fill missing provider and resource values from the wildcard entries."""
        for prov in cfg.providers:
            prov.apply_wild_provider(cfg.wild_provider)
            for res in prov.resources.values():
                if res is None:
                    continue
                res.apply_wild_resource(prov.wild_resource)
                if cfg.wild_provider is not None:
                    res.apply_wild_resource(cfg.wild_provider.wild_resource)

    def _decode_provider_block(self, block: _Block, errors: list[str]) -> ProviderConfig | None:
        attrs, blocks, local = self._content(block.body, _PROVIDER_ATTRIBUTES, {"resource": 1})
        if local:
            errors.extend(local)
            return None

        prov = ProviderConfig(name=block.labels[0])
        prov.version = self._decode_attr(attrs, "version", _to_string, local, "")
        for name in ("ignore_resources", "check_resources"):
            entries = self._decode_attr(attrs, name, _to_string_list, local)
            if entries is None:
                continue
            try:
                setattr(prov, name, parse_resource_selectors(entries))
            except ConfigError as exc:
                local.append(f"Invalid {name} entry: {exc}")
        prov.account_ids = self._decode_attr(attrs, "account_ids", _to_string_list, local, [])

        for res_block in blocks:
            res = self._decode_resource_block(res_block, local)
            if res is None:
                continue
            res.def_range = res_block.where
            label = res_block.labels[0]
            if label == WILDCARD:
                prov.wild_resource = res
            else:
                prov.resources[label] = res

        if local:
            errors.extend(local)
            return None
        return prov

    def _decode_resource_block(self, block: _Block, errors: list[str]) -> ResourceConfig | None:
        attrs, blocks, local = self._content(block.body, _RESOURCE_ATTRIBUTES, {"iac": 0})
        if local:
            errors.extend(local)
            return None

        res = ResourceConfig()
        for name in ("identifiers", "ignore_identifiers", "attributes", "ignore_attributes", "filters", "sets"):
            setattr(res, name, self._decode_attr(attrs, name, _to_string_list, local, []))
        res.deep = self._decode_attr(attrs, "deep", _to_bool, local)

        for iac_block in blocks:
            _, iac_blocks, iac_errors = self._content(
                iac_block.body,
                frozenset(),
                {IACProvider.TERRAFORM.value: 0, IACProvider.CLOUDFORMATION.value: 0},
            )
            if iac_errors:
                local.extend(iac_errors)
                continue
            for sub in iac_blocks:
                iac = self._decode_iac_block(sub, local)
                if iac is not None:
                    iac.def_range = iac_block.where
                    res.iac[IACProvider(sub.type)] = iac

        if local:
            errors.extend(local)
            return None
        return res

    def _decode_iac_block(self, block: _Block, errors: list[str]) -> IACConfig | None:
        attrs, _, local = self._content(block.body, _IAC_ATTRIBUTES, {})
        if local:
            errors.extend(local)
            return None
        iac = IACConfig(
            type=self._decode_attr(attrs, "type", _to_string, local, ""),
            path=self._decode_attr(attrs, "path", _to_string, local, ""),
            identifiers=self._decode_attr(attrs, "identifiers", _to_string_list, local, []),
            attribute_map=self._decode_attr(attrs, "attribute_map", _to_string_list, local, []),
        )
        if local:
            errors.extend(local)
            return None
        for entry in iac.attribute_map:
            cloud, sep, target = entry.partition("=")
            if not sep:
                errors.append(
                    "Invalid attribute_map entry: attribute_map entry should have a "
                    '"cloud_attribute=iac_attribute" format'
                )
                continue
            iac.attribute_mapping[cloud] = target
        return iac

    def _decode_terraform_block(
        self, block: _Block, errors: list[str]
    ) -> TerraformSourceConfig | None:
        attrs, _, local = self._content(block.body, _TERRAFORM_ATTRIBUTES, {})
        if local:
            errors.extend(local)
            return None
        source = TerraformSourceConfig(
            backend=self._decode_attr(attrs, "backend", _to_string, local, ""),
            files=self._decode_attr(attrs, "files", _to_string_list, local, []),
            bucket=self._decode_attr(attrs, "bucket", _to_string, local, ""),
            keys=self._decode_attr(attrs, "keys", _to_string_list, local, []),
            region=self._decode_attr(attrs, "region", _to_string, local, ""),
            role_arn=self._decode_attr(attrs, "role_arn", _to_string, local, ""),
        )
        if local:
            errors.extend(local)
            return None
        try:
            source.validate()
        except ConfigError as exc:
            errors.append(f"Invalid terraform config: {exc}")
            return None
        return source