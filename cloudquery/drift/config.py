"""Drift configuration model, resource selectors and provider matching."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Protocol, Sequence

from cloudquery.drift.table import ProviderSchema, TraversedTable, traverse_resource_table
from cloudquery.versioning import Constraints, VersionError, parse_version

WILDCARD = "*"

_log = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised for invalid drift configuration."""

    def __init__(self, *messages: str) -> None:
        self.messages = list(messages)
        super().__init__("; ".join(messages))


class IACProvider(str, Enum):
    TERRAFORM = "terraform"
    CLOUDFORMATION = "cloudformation"

    def __str__(self) -> str:
        return {"terraform": "Terraform", "cloudformation": "Cloudformation"}.get(
            self.value, "unknown"
        )


class Placeholder(str, Enum):
    RESOURCE_KEY = "resourceKey"
    RESOURCE_NAME = "resourceName"
    RESOURCE_COLUMN_NAMES = "resourceColumnNames"
    RESOURCE_OPTS_PRIMARY_KEYS = "resourceOptionsPrimaryKeys"

    @property
    def token(self) -> str:
        """The literal text that stands for this placeholder in a config."""
        return "${" + self.value + "}"


class TerraformBackend(str, Enum):
    LOCAL = "local"
    S3 = "s3"


@dataclass
class TerraformSourceConfig:
    backend: str = ""
    bucket: str = ""
    keys: list[str] = field(default_factory=list)
    region: str = ""
    role_arn: str = ""
    files: list[str] = field(default_factory=list)

    def validate(self) -> None:
        if self.backend == TerraformBackend.LOCAL:
            if not self.files:
                raise ConfigError("files not specified")
        elif self.backend == TerraformBackend.S3:
            if not self.bucket:
                raise ConfigError("bucket not specified")
            if not self.keys:
                raise ConfigError("keys not specified")
        else:
            raise ConfigError("invalid backend type")


@dataclass
class ResourceSelector:
    type: str = ""
    id: str | None = None
    tags: dict[str, str] | None = None


class ResourceSelectors(list):
    """A list of resource selectors."""

    def by_type(self, resource_type: str) -> ResourceSelectors:
        return ResourceSelectors(s for s in self if s.type == resource_type)

    def all_instances(self) -> bool:
        return self.contains_instance(WILDCARD)

    def contains_instance(self, resource_id: str) -> bool:
        return any(s.id is not None and s.id == resource_id for s in self)

    def has_tags(self) -> bool:
        return any(s.tags is not None for s in self)

    def contains_tags(self, tags: Mapping[str, str] | None) -> bool:
        """True if any tag selector is fully matched by the given tags."""
        if tags is None:
            return False
        for selector in self:
            if selector.tags is None:
                continue
            if all(k in tags and tags[k] == v for k, v in selector.tags.items()):
                return True
        return False


class _Identified(Protocol):
    id: str
    tags: Mapping[str, str] | None


@dataclass
class ResourceACL:
    """Allow and ignore lists for resources."""

    allow_enabled: bool = False
    allow: ResourceSelectors = field(default_factory=ResourceSelectors)
    ignore: ResourceSelectors = field(default_factory=ResourceSelectors)

    def should_skip(self, resource: _Identified) -> bool:
        if (
            self.allow_enabled
            and not self.allow.contains_instance(resource.id)
            and not self.allow.contains_instance(WILDCARD)
            and not self.allow.contains_tags(resource.tags)
        ):
            return True
        return (
            self.ignore.contains_instance(resource.id)
            or self.ignore.contains_instance(WILDCARD)
            or self.ignore.contains_tags(resource.tags)
        )

    def has_tag_filters(self) -> bool:
        if self.allow_enabled and self.allow.has_tags():
            return True
        return self.ignore.has_tags()


@dataclass
class IACConfig:
    type: str = ""
    path: str = ""
    identifiers: list[str] = field(default_factory=list)
    attribute_map: list[str] = field(default_factory=list)
    # parsed attribute_map: cloud attribute -> IaC attribute
    attribute_mapping: dict[str, str] = field(default_factory=dict)
    def_range: Any = field(default=None, compare=False)


def merge_dedup_slices(*args: Iterable[str]) -> list[str]:
    """Union of all given lists, sorted."""
    return sorted({item for items in args for item in items})


def remove_ignored(items: Sequence[str], ignored: Iterable[str]) -> list[str]:
    ignored_set = set(ignored)
    return [item for item in items if item not in ignored_set]


def replace_placeholder_in_slice(
    name: Placeholder | str, value: Sequence[str], subject: Sequence[str]
) -> list[str]:
    """Replace every entry equal to the placeholder with all of value."""
    key = name.value if isinstance(name, Placeholder) else name
    token = "${" + key + "}"
    result: list[str] = []
    for item in subject:
        if item == token:
            result.extend(value)
        else:
            result.append(item)
    return result


@dataclass
class ResourceConfig:
    identifiers: list[str] = field(default_factory=list)
    ignore_identifiers: list[str] = field(default_factory=list)
    attributes: list[str] = field(default_factory=list)
    ignore_attributes: list[str] = field(default_factory=list)
    deep: bool | None = None
    filters: list[str] = field(default_factory=list)
    sets: list[str] = field(default_factory=list)
    iac: dict[IACProvider, IACConfig] = field(default_factory=dict)
    def_range: Any = field(default=None, compare=False)
    acl: ResourceACL = field(default_factory=ResourceACL)

    def apply_wild_resource(self, wild: ResourceConfig | None) -> None:
        """Fill missing values from wild; ignore lists, filters, sets and attribute maps grow."""
        if wild is None:
            return
        if not self.identifiers:
            self.identifiers = wild.identifiers
        if not self.attributes:
            self.attributes = wild.attributes
        if self.deep is None:
            self.deep = wild.deep

        self.ignore_identifiers = merge_dedup_slices(self.ignore_identifiers, wild.ignore_identifiers)
        self.ignore_attributes = merge_dedup_slices(self.ignore_attributes, wild.ignore_attributes)
        self.filters = merge_dedup_slices(self.filters, wild.filters)
        self.sets = merge_dedup_slices(self.sets, wild.sets)

        if not self.iac:
            self.iac = wild.iac
            return

        for provider, own in self.iac.items():
            other = wild.iac.get(provider)
            if other is None:
                continue
            for key, value in other.attribute_mapping.items():
                own.attribute_mapping.setdefault(key, value)


@dataclass
class ProviderConfig:
    name: str = ""
    resources: dict[str, ResourceConfig | None] = field(default_factory=dict)
    version: str = ""
    ignore_resources: ResourceSelectors = field(default_factory=ResourceSelectors)
    check_resources: ResourceSelectors = field(default_factory=ResourceSelectors)
    account_ids: list[str] = field(default_factory=list)
    wild_resource: ResourceConfig | None = None
    version_constraints: Constraints | None = None

    def apply_wild_provider(self, wild: ProviderConfig | None) -> None:
        if wild is None:
            return
        if not self.ignore_resources:
            self.ignore_resources = wild.ignore_resources
        if not self.check_resources:
            self.check_resources = wild.check_resources
        if not self.account_ids:
            self.account_ids = wild.account_ids

    def resource_keys(self) -> list[str]:
        return sorted(self.resources)

    def interpolated_resource_map(self, iac_provider: IACProvider) -> dict[str, ResourceConfig]:
        """Resources configured for the IaC provider, with ignore lists applied."""
        result: dict[str, ResourceConfig] = {}
        for res_name in self.resource_keys():
            res = self.resources[res_name]
            if res is None:
                continue
            if res.iac.get(iac_provider) is None:
                _log.debug(
                    "Will skip resource, iac provider not configured: provider=%s resource=%s iac_provider=%s",
                    self.name,
                    res_name,
                    iac_provider.value,
                )
                continue
            res.identifiers = remove_ignored(res.identifiers, res.ignore_identifiers)
            res.attributes = remove_ignored(res.attributes, res.ignore_attributes)
            result[res_name] = res
        return result


@dataclass
class BaseConfig:
    wild_provider: ProviderConfig | None = None
    providers: list[ProviderConfig] = field(default_factory=list)
    terraform: TerraformSourceConfig | None = None

    def find_provider(self, name: str) -> ProviderConfig | None:
        return next((p for p in self.providers if p.name == name), None)


def parse_tags(tags: Iterable[str]) -> dict[str, str]:
    """Parse key=value entries; a bare key maps to an empty value."""
    result: dict[str, str] = {}
    for tag in tags:
        if not tag:
            continue
        key, _, value = tag.partition("=")
        result[key] = value
    return result


def parse_resource_selectors(entries: Iterable[str]) -> ResourceSelectors:
    """Parse selectors of the form type:id or type:[key=value,...]."""
    result = ResourceSelectors()
    for entry in entries:
        parts = entry.split(":", 1)
        if len(parts) != 2:
            raise ConfigError(
                "invalid resource selector, should be in type:id or type:[tags] format"
            )
        res_type, rest = parts
        if not res_type:
            raise ConfigError("type can't be empty, use * for wildcard")
        selector = ResourceSelector(type=res_type)
        if len(rest) > 2 and rest.startswith("[") and rest.endswith("]"):
            tags = []
            for tag in rest.strip("[]").split(","):
                if not tag:
                    raise ConfigError("invalid empty tag in resource selector")
                if "=" not in tag:
                    raise ConfigError(f'invalid tag in resource selector: "{tag}"')
                tags.append(tag)
            selector.tags = parse_tags(tags)
        else:
            selector.id = rest
        result.append(selector)
    return result


class ProviderMatcher:
    """Matches provider configs against provider schemas and caches table lookups."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or _log
        self._tables: dict[str, dict[str, TraversedTable]] = {}

    def lookup_resource(self, res_name: str, schema: ProviderSchema) -> TraversedTable | None:
        tables = self._tables.get(schema.name)
        if tables is None:
            tables = traverse_resource_table(schema.resource_tables)
            self._tables[schema.name] = tables
        return tables.get(res_name)

    def find_provider(
        self, cfg: ProviderConfig, schemas: Iterable[ProviderSchema]
    ) -> ProviderSchema:
        for schema in schemas:
            if self.apply_provider(cfg, schema):
                return schema
        raise ConfigError(f'no suitable provider found for "{cfg.name}"')

    def apply_provider(self, cfg: ProviderConfig, schema: ProviderSchema) -> bool:
        """Apply cfg to the schema if name and version match.

        Returns False when the provider does not match. On a match, resources
        are filtered by the check/ignore lists and placeholders are resolved;
        any problems found are raised together as a ConfigError.
        """
        if schema.name != cfg.name:
            return False

        if cfg.version_constraints:
            try:
                pver = parse_version(schema.version)
                if pver.prerelease().startswith("SNAPSHOT"):
                    pver = parse_version(schema.version.split("-", 1)[0])
            except VersionError as exc:
                raise ConfigError(
                    f'Invalid provider version: could not parse provider version "{schema.version}": {exc}'
                ) from exc
            if not cfg.version_constraints.check(pver):
                self.logger.warning(
                    "provider is blocked by constraint: provider=%s@%s constraint=%s",
                    schema.name,
                    schema.version,
                    cfg.version,
                )
                return False

        errors: list[str] = []
        all_ignores = cfg.ignore_resources.by_type(WILDCARD)
        all_checks = cfg.check_resources.by_type(WILDCARD)
        check_enabled = len(cfg.check_resources) > 0

        for res_name, res in list(cfg.resources.items()):
            if res is None:
                continue
            if check_enabled:
                res.acl.allow_enabled = True
                res.acl.allow = ResourceSelectors(
                    [*cfg.check_resources.by_type(res_name), *all_checks]
                )
                if not res.acl.allow.all_instances() and not res.acl.allow.has_tags():
                    del cfg.resources[res_name]
                    continue

            res.acl.ignore = ResourceSelectors(
                [*cfg.ignore_resources.by_type(res_name), *all_ignores]
            )
            if res.acl.ignore.all_instances():
                del cfg.resources[res_name]
                continue

            table = self.lookup_resource(res_name, schema)
            if table is None:
                errors.append(
                    f'Specified resource not in provider: resource "{res_name}" is not defined by the provider'
                )
                continue

            replacements = {
                Placeholder.RESOURCE_KEY: [res_name],
                Placeholder.RESOURCE_NAME: [table.name],
                Placeholder.RESOURCE_COLUMN_NAMES: table.non_cq_columns(),
                Placeholder.RESOURCE_OPTS_PRIMARY_KEYS: table.non_cq_primary_keys(),
            }
            for placeholder, value in replacements.items():
                res.identifiers = replace_placeholder_in_slice(placeholder, value, res.identifiers)
                res.ignore_identifiers = replace_placeholder_in_slice(
                    placeholder, value, res.ignore_identifiers
                )
                res.attributes = replace_placeholder_in_slice(placeholder, value, res.attributes)
                res.ignore_attributes = replace_placeholder_in_slice(
                    placeholder, value, res.ignore_attributes
                )
                res.sets = replace_placeholder_in_slice(placeholder, value, res.sets)

        if errors:
            raise ConfigError(*errors)
        return True