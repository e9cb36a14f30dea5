"""The drift module: compares Terraform state with fetched cloud resources."""

from __future__ import annotations

import glob
import logging
from typing import Any, Mapping, Sequence

from cloudquery.drift.config import (
    BaseConfig,
    ConfigError,
    IACProvider,
    ProviderMatcher,
    TerraformSourceConfig,
)
from cloudquery.drift.model import Results, RunParams
from cloudquery.drift.parser import Parser
from cloudquery.drift.s3glob import load_states_from_s3
from cloudquery.drift.terraform import drift_terraform
from cloudquery.module import ExecuteRequest, ExecutionResult, Module
from cloudquery.tfstate import (
    Data,
    StateError,
    UnsupportedStateVersion,
    load_state,
    validate_state_version,
)

_log = logging.getLogger(__name__)

_IAC_NAMES = {
    IACProvider.TERRAFORM: "Terraform",
    IACProvider.CLOUDFORMATION: "Cloudformation",
}

EXAMPLE_CONFIG = """// drift configuration block
drift "drift-example" {
  // state block defines from where to access the state
  terraform {
    // backend: "local" or "s3"
    backend  = "local"

    // local backend options
    // files: list of tfstate files
    files = [ "/path/to.tfstate" ]

    // s3 backend options
    // bucket   = "<tfstate bucket>"
    // keys     = [ "<tfstate key>" ]
    // region   = "us-east-1"
    // role_arn = ""
  }

    // provider "aws" {
    //   account_ids      = ["111111111111"]
    //   check_resources   = ["ec2.instances:*"]
    //   ignore_resources = ["ec2.instances:i-0000000000", "aws_cloudwatchlogs_filters:*"]
    // }
}"""


class Drift(Module):
    """Detects resources that drifted from, or are missing in, the IaC state.

    builtin_config is the body of the built-in configuration (provider and
    resource defaults) that profile configurations are merged into.
    s3_client is used to read states from the "s3" backend.
    """

    def __init__(
        self,
        builtin_config: Mapping[str, Any] | None = None,
        s3_client: Any = None,
    ) -> None:
        self.builtin_config = builtin_config
        self.s3_client = s3_client
        self.config: BaseConfig | None = None
        self.params: RunParams | None = None
        self._matcher = ProviderMatcher()

    def id(self) -> str:
        return "drift"

    def configure(self, profile_config: Mapping[str, Any] | None, run_params: Any) -> None:
        if not isinstance(run_params, RunParams):
            raise TypeError("drift parameters must be RunParams")
        self.params = run_params
        try:
            builtin = Parser().decode(self.builtin_config or {})
        except ConfigError as exc:
            raise ConfigError(f"builtin config failed: {exc}") from exc
        try:
            self.config = self.read_profile_config(builtin, profile_config)
        except ConfigError as exc:
            raise ConfigError(f"read config failed: {exc}") from exc
        self._matcher = ProviderMatcher()

    def execute(self, request: ExecuteRequest) -> ExecutionResult:
        ret = ExecutionResult()
        try:
            ret.result = self._run(request)
        except Exception as exc:
            ret.error = exc
            ret.error_msg = str(exc)
        return ret

    def example_config(self) -> str:
        return EXAMPLE_CONFIG

    def read_profile_config(
        self, base: BaseConfig, body: Mapping[str, Any] | None
    ) -> BaseConfig:
        """Merge a profile configuration body into the base configuration."""
        parser = Parser()
        if body is None:
            parser.interpret(base)
            return base

        cfg = parser.decode(body)
        base.terraform = cfg.terraform

        if cfg.wild_provider is not None:
            if base.wild_provider is None:
                base.wild_provider = cfg.wild_provider
            else:
                base.wild_provider.apply_wild_provider(cfg.wild_provider)
                if cfg.wild_provider.wild_resource is not None:
                    cfg.wild_provider.wild_resource.apply_wild_resource(
                        base.wild_provider.wild_resource
                    )
                    base.wild_provider.wild_resource = cfg.wild_provider.wild_resource

        for prov in base.providers:
            cp = cfg.find_provider(prov.name)
            if cp is None:
                continue
            prov.apply_wild_provider(cp)

            if cp.wild_resource is not None:
                cp.wild_resource.apply_wild_resource(prov.wild_resource)
                prov.wild_resource = cp.wild_resource

            for res_name, res in list(prov.resources.items()):
                cres = cp.resources.get(res_name)
                if cres is not None:
                    cres.apply_wild_resource(res)
                    prov.resources[res_name] = cres

        parser.interpret(base)
        return base

    def _run(self, request: ExecuteRequest) -> Results:
        if self.config is None or self.params is None:
            raise RuntimeError("drift module is not configured")
        params = self.params

        iac_prov, states = read_iac_states(
            IACProvider.TERRAFORM.value,
            self.config.terraform,
            params.state_files,
            self.s3_client,
        )
        results = Results(
            iac_name=_IAC_NAMES.get(iac_prov, "unknown"),
            list_managed=params.list_managed,
            debug=params.debug,
        )

        for cfg in self.config.providers:
            schema = self._matcher.find_provider(cfg, request.providers)
            if schema is None:
                continue
            _log.debug("Processing for provider %s", schema.name)

            resources = cfg.interpolated_resource_map(iac_prov)
            for res_name in cfg.resource_keys():
                res = resources.get(res_name)
                if res is None:
                    continue
                table = self._matcher.lookup_resource(res_name, schema)
                if table is None:
                    _log.warning("Skipping resource, lookup failed: %s", res_name)
                    continue
                try:
                    result = drift_terraform(
                        request.conn,
                        schema.name,
                        table,
                        res_name,
                        resources,
                        res.iac[iac_prov],
                        states,
                        params,
                        cfg.account_ids,
                    )
                except Exception as exc:
                    raise RuntimeError(
                        f"drift failed for ({schema.name}:{res_name}): {exc}"
                    ) from exc
                result.provider = schema.name
                result.resource_type = res_name
                results.data.append(result)

        results.process()
        return results


def read_iac_states(
    iac_id: str,
    tf: TerraformSourceConfig | None,
    state_files: Sequence[str] | None = None,
    s3_client: Any = None,
) -> tuple[IACProvider, list[Data]]:
    """Load the IaC states, from the given files or from the configured backend."""
    if iac_id != IACProvider.TERRAFORM.value:
        raise ValueError(f'unknown IAC "{iac_id}"')

    files = list(state_files or [])
    if not files:
        if tf is None:
            raise ValueError(
                "terraform configuration not found: either specify state files or edit config.hcl"
            )
        backend = getattr(tf.backend, "value", tf.backend)
        if backend == "local":
            files = list(tf.files)
        elif backend == "s3":
            if s3_client is None:
                raise ValueError("an S3 client is required for the s3 backend")
            states = load_states_from_s3(s3_client, iac_id, tf.bucket, tf.keys)
            return IACProvider.TERRAFORM, states
        else:
            raise ValueError("unsupported backend")

    if not files:
        raise ValueError(f"state files for {iac_id} not specified")

    states = []
    for pattern in files:
        for name in sorted(glob.glob(pattern)):
            with open(name, "rb") as fh:
                try:
                    data = load_state(fh)
                except StateError as exc:
                    raise StateError(f"parse {name}: {exc}") from exc
            try:
                warning = validate_state_version(data)
            except UnsupportedStateVersion as exc:
                raise UnsupportedStateVersion(f"validate {name}: {exc}") from exc
            if warning:
                _log.warning("ValidateStateVersion: %s", warning)
            states.append(data)

    if not states:
        raise ValueError(f"no matches for specified {iac_id} state patterns")
    return IACProvider.TERRAFORM, states