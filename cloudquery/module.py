"""Modules and the manager that runs them."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class UnknownModuleError(LookupError):
    """Raised when a module that is not registered is requested."""


class ModuleConfigurationError(Exception):
    """Raised when a module rejects its configuration."""


@dataclass
class ExecuteRequest:
    params: Any = None
    providers: list[Any] = field(default_factory=list)
    conn: Any = None


@dataclass
class ExecutionResult:
    result: Any = None
    error: BaseException | None = None
    error_msg: str = ""


class Module(ABC):
    """A unit of work that runs against fetched provider data."""

    @abstractmethod
    def id(self) -> str:
        """Return the module's name."""

    @abstractmethod
    def configure(self, profile_config: Any, params: Any) -> None:
        """Prepare the module to run; raise on invalid configuration."""

    @abstractmethod
    def execute(self, request: ExecuteRequest) -> ExecutionResult:
        """Run the module with the given request."""

    def example_config(self) -> str:
        """Return an example configuration block, or an empty string."""
        return ""


class ModuleManager:
    """Registers modules and executes them against a database connection."""

    def __init__(self, pool: Any) -> None:
        self.pool = pool
        self._modules: dict[str, Module] = {}

    def register_module(self, mod: Module) -> None:
        mod_id = mod.id()
        if mod_id in self._modules:
            raise ValueError(f"module {mod_id} already registered")
        self._modules[mod_id] = mod

    def execute_module(
        self, mod_name: str, cfg: Any, request: ExecuteRequest
    ) -> ExecutionResult:
        """Configure the named module and run it with the manager's connection."""
        mod = self._modules.get(mod_name)
        if mod is None:
            raise UnknownModuleError(f'module not found "{mod_name}"')
        try:
            mod.configure(cfg, request.params)
        except Exception as exc:
            raise ModuleConfigurationError(f"module configuration failed: {exc}") from exc
        request.conn = self.pool
        return mod.execute(request)

    def example_configs(self) -> list[str]:
        """Example configurations of the registered modules, in registration order."""
        return [cfg for mod in self._modules.values() if (cfg := mod.example_config())]