# cloudquery

A library for comparing what runs in a cloud account with what Terraform
state says should be there, plus helpers for managing provider plugins from a
registry. Everything is reached through Python imports; there is no command.

## Modules

| Module | What it holds |
| --- | --- |
| `cloudquery.tfstate` | `load_state`, `validate_state_version` and the state dataclasses (`Data`, `State`, `Resource`, `Instance`, `OutputState`, `Mode`) |
| `cloudquery.versioning` | `parse_version`, `parse_constraints`, `Version`, `Constraints`, `VersionError` |
| `cloudquery.module` | `Module`, `ModuleManager`, `ExecuteRequest`, `ExecutionResult` |
| `cloudquery.drift.drift` | the `Drift` module and `read_iac_states` |
| `cloudquery.drift.parser` | `Parser`, which decodes configuration bodies, and `sql_expr` |
| `cloudquery.drift.config` | configuration dataclasses, resource selectors, `ProviderMatcher` |
| `cloudquery.drift.table` | `ProviderSchema`, `Table`, `Column`, `ValueType`, `TraversedTable` |
| `cloudquery.drift.query` | the `Select` builder, identifier/filter/parent-join helpers, `query_into_resource_list` |
| `cloudquery.drift.terraform` | `drift_terraform`, attribute comparison (`equals`, `equal_sets`, `equal_attributes`), `render_drift_table` |
| `cloudquery.drift.s3glob` | `glob_s3`, `load_states_from_s3` |
| `cloudquery.drift.model` | `RunParams`, `Resource`, `ResourceList`, `Result`, `Results` |
| `cloudquery.registry.organization` | `parse_provider_name`, `provider_repo_name` |
| `cloudquery.registry.checksum` | `sha256_file`, `validate_checksum_provider`, `ChecksumError` |
| `cloudquery.registry.hub` | `Hub`, `RequiredProvider`, `ProviderDetails`, `binary_suffix`, `RegistryError` |

## Reading Terraform state

```python
from cloudquery.tfstate import load_state, validate_state_version

with open("terraform.tfstate", "rb") as fh:
    data = load_state(fh)

warning = validate_state_version(data)   # None for version 4
for resource in data.state.resources:
    print(resource.mode, resource.type, resource.name, len(resource.instances))
```

`load_state` raises `StateError` for documents that are not valid JSON or
have fields of the wrong type. `validate_state_version` returns `None` for
version 4, returns a warning message when the version is missing or unknown,
and raises `UnsupportedStateVersion` for versions 2 and 3.

## Versions and constraints

```python
from cloudquery.versioning import parse_version, parse_constraints

constraints = parse_constraints(">=1.5.0")
constraints.check(parse_version("1.6.0"))   # True
constraints.check(parse_version("1.0.0"))   # False
parse_version("v1.2.3-beta+build").prerelease()   # "beta"
```

Supported operators are `=`, `!=`, `>`, `<`, `>=`, `<=` and `~>`; several
constraints are separated by commas and must all hold. Malformed input raises
`VersionError`.

## Drift detection

### Configuration bodies

`Parser.decode` reads a configuration body given as a mapping in the shape of
HCL's JSON syntax: attributes map to values, blocks map to an object (or a
list of objects), and labelled blocks map each label to its body.

```python
body = {
    "terraform": {"backend": "local", "files": ["states/*.tfstate"]},
    "provider": {
        "aws": {
            "version": ">=1.5.0",
            "check_resources": ["ec2.instances:*"],
            "ignore_resources": ["ec2.instances:i-000example", "ec2.instances:[env=dev]"],
            "resource": {
                "ec2.instances": {
                    "identifiers": ["id"],
                    "attributes": ["${resource.Value.ColumnNames}"],
                    "ignore_attributes": ["launch_time"],
                    "deep": True,
                    "iac": {
                        "terraform": {
                            "type": "aws_instance",
                            "attribute_map": ["instance_type=instance_type"],
                        }
                    },
                }
            },
        }
    },
}
```

- Blocks: `terraform` and `provider "<name>"`; inside a provider,
  `resource "<name>"`; inside a resource, an `iac` block holding `terraform`
  and/or `cloudformation` sections.
- Provider attributes: `version` (a constraint), `check_resources`,
  `ignore_resources` (selectors of the form `type:id` or
  `type:[key=value,...]`, with `*` as wildcard type or id) and `account_ids`.
  A provider named `*` supplies defaults for the others and may not set
  `version` or `account_ids`.
- Resource attributes: `identifiers`, `ignore_identifiers`, `attributes`,
  `ignore_attributes`, `deep`, `filters` (SQL conditions), `sets`
  (list attributes compared without regard to order). A resource named `*`
  supplies defaults for the provider's resources.
- IaC section attributes: `type`, `path`, `identifiers` and `attribute_map`
  entries of the form `cloud_attribute=iac_attribute`.
- Terraform block attributes: `backend` (`local` or `s3`), `files`,
  `bucket`, `keys`, `region`, `role_arn`. A `local` backend needs `files`;
  an `s3` backend needs `bucket` and `keys`.

String values are templates. `"${expr}"` interpolates an expression and
`"$${"` stands for a literal `${`. The variable `resource` offers
placeholders (`resource.Key`, `resource.Value.Name`,
`resource.Value.ColumnNames`, `resource.Value.Options.PrimaryKeys`) that are
resolved against the provider's table schema when it is matched. The `sql`
function, as in `"${sql(\"LEFT(id, 5)\")}"`, marks an identifier to be used as
a raw SQL expression. `Parser(variables=..., functions=...)` adds further
variables and functions.

Every problem found in a body is collected and raised together as one
`ConfigError`.

### Running the drift module

```python
from cloudquery.drift.drift import Drift
from cloudquery.drift.model import RunParams
from cloudquery.drift.table import Column, ProviderSchema, Table, ValueType
from cloudquery.module import ExecuteRequest, ModuleManager

schema = ProviderSchema(
    name="aws",
    version="1.6.0",
    resource_tables={
        "ec2.instances": Table(
            name="aws_ec2_instances",
            columns=[Column("id", ValueType.STRING), Column("instance_type", ValueType.STRING)],
            primary_keys=["id"],
        )
    },
)

manager = ModuleManager(conn)          # conn: a DB-API connection to the fetched tables
manager.register_module(Drift(builtin_config=body))

result = manager.execute_module(
    "drift",
    {"terraform": {"backend": "local", "files": ["terraform.tfstate"]}},
    ExecuteRequest(params=RunParams(tf_mode="managed"), providers=[schema]),
)
if result.error is None:
    print(result.result)
    raise SystemExit(result.result.exit_code())
print(result.error_msg)
```

- `Drift(builtin_config=...)` takes the base configuration; the profile body
  passed to `execute_module` is merged into it, the profile's values taking
  precedence. With no profile body the base configuration is used as is.
- `RunParams.tf_mode` must be `"managed"` or `"data"`. `force_deep` compares
  attributes for every resource, `state_files` overrides the configured
  backend, `list_managed` lists matched resources in the report, and `debug`
  prints a table of differing attributes and names resource types that were
  never matched.
- `ModuleManager.execute_module` raises `UnknownModuleError` for an
  unregistered module and `ModuleConfigurationError` when configuration
  fails; errors while running end up in `ExecutionResult.error` and
  `error_msg`.

Each configured resource is sorted into *extra* (in the cloud, not in the
state), *missing* (in the state, not in the cloud) and, depending on deep
mode, *equal* or *deep equal* / *different*. `Results.process()` builds the
report; `str(results)` returns it, `results.coverage` holds the covered
fraction and `results.exit_code()` is `1` whenever anything has drifted,
`0` otherwise.

### States in S3

With `backend = "s3"` the `Drift` module needs an S3 client passed as
`Drift(s3_client=...)`; it must offer `list_objects_v2(Bucket=, Prefix=,
ContinuationToken=)` and `get_object(Bucket=, Key=)` in the form returned by
the common AWS SDK. Keys may use `*` (within one path segment) and `**`
(across segments); `glob_s3` resolves them.

## Provider registry

```python
from cloudquery.registry.hub import Hub, RequiredProvider
from cloudquery.registry.organization import parse_provider_name, provider_repo_name

parse_provider_name("aws")            # ("cloudquery", "aws")
parse_provider_name("MyOrg/custom")   # ("myorg", "custom")
provider_repo_name("aws")             # "cq-provider-aws"

hub = Hub("https://registry.example.com/orgs/%s/providers/%s")
hub.check_provider_update(RequiredProvider(name="aws", version="0.8.0"))
```

- `Hub` scans `plugin_directory` (default `./.cq/providers`) for already
  downloaded binaries laid out as `<org>/<provider>/<version>-<os>_<arch>`;
  `get_provider(name, version)` returns one, with `"latest"` picking the
  highest version present.
- `check_provider_update` returns the newer release tag, or `""`.
- `download_provider` downloads a missing provider after checking that the
  registry URL (whose two `%s` are the organization and provider) answers,
  then verifies it; `no_verify=True` skips both checks.
- `verify_provider` downloads `checksums.txt` and its `.sig`, calls the
  `signature_verifier`, and checks the binary with
  `validate_checksum_provider`. Providers outside the `cloudquery`
  organization are not verified.
- Release lookup, downloads and signature checks are injectable through
  `latest_release_getter`, `downloader` and `signature_verifier`.

## What the package does not do

- It has no command-line interface.
- It reads configuration only as JSON-shaped mappings; it does not parse
  native HCL text.
- It does not open database connections or create S3 clients; they are
  passed in. The `region` and `role_arn` settings are parsed but not used to
  build a client.
- It does not check PGP signatures itself: without a `signature_verifier`,
  `Hub.verify_provider` reports failure.
- It does not start, attach to or talk to provider plugin processes.