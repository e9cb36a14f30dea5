"""Drift results and their textual summary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass
class RunParams:
    debug: bool = False
    tf_mode: str = ""
    force_deep: bool = False
    list_managed: bool = False
    iac_name: str = ""
    state_files: list[str] = field(default_factory=list)


@dataclass
class Resource:
    id: str
    attributes: list[Any] = field(default_factory=list)
    tags: dict[str, str] | None = None


class ResourceList(list):
    """A list of resources with ID helpers."""

    def ids(self, *args: Resource) -> list[str]:
        """Return the IDs in order, leaving out those of the given resources."""
        excluded = {r.id for r in args}
        return [r.id for r in self if r.id not in excluded]

    def walk(
        self,
        fn: Callable[[Resource], None],
        skipper: Callable[[Resource], bool] | None = None,
    ) -> None:
        """Call fn on every resource that skipper does not reject."""
        for resource in self:
            if skipper is not None and skipper(resource):
                continue
            fn(resource)

    def as_map(self) -> dict[str, list[Any]]:
        """Return a mapping of resource ID to attributes."""
        return {r.id: r.attributes for r in self}


def _summarise(items: ResourceList, name: str) -> str | None:
    count = len(items)
    if count == 0:
        return None
    if count == 1:
        return f"{count} {name} ({items[0].id})"
    if count == 2:
        return f"{count} {name} ({items[0].id}, {items[1].id})"
    return f"{count} {name} ({items[0].id}, {items[1].id}, ...)"


@dataclass
class Result:
    provider: str = ""
    resource_type: str = ""
    different: ResourceList = field(default_factory=ResourceList)
    deep_equal: ResourceList = field(default_factory=ResourceList)
    equal: ResourceList = field(default_factory=ResourceList)
    missing: ResourceList = field(default_factory=ResourceList)
    extra: ResourceList = field(default_factory=ResourceList)

    def __str__(self) -> str:
        summaries = (
            _summarise(self.different, "different"),
            _summarise(self.equal, "equal"),
            _summarise(self.deep_equal, "deepequal"),
            _summarise(self.missing, "missing"),
            _summarise(self.extra, "extra"),
        )
        parts = [s for s in summaries if s] or ["no"]
        return f"{self.provider}:{self.resource_type} has {', '.join(parts)} resources"


@dataclass
class _Combined:
    provider: str
    resource_type: str
    resource_ids: list[str]


@dataclass
class Results:
    iac_name: str = ""
    data: list[Result | None] = field(default_factory=list)
    list_managed: bool = False
    debug: bool = False
    drifted: int = 0
    covered: int = 0
    total: int = 0
    coverage: float = 0.0
    text: str = ""

    def __str__(self) -> str:
        return self.text

    def exit_code(self) -> int:
        return 1 if self.drifted > 0 else 0

    def process(self) -> None:
        """Compute the counters and build the report text."""
        combo: dict[str, list[_Combined]] = {
            name: [] for name in ("different", "extra", "equal", "deep_equal", "missing")
        }
        for result in self.data:
            if result is None:
                continue
            for name, groups in combo.items():
                ids = getattr(result, name).ids()
                if ids:
                    groups.append(_Combined(result.provider, result.resource_type, ids))

        sections = (
            ("not managed by $iac", combo["extra"], False, True),
            ("in $iac state but missing on the cloud provider", combo["missing"], False, True),
            ("managed by $iac but drifted", combo["different"], False, True),
            ("managed by $iac (equal IDs)", combo["equal"], not self.list_managed, False),
            (
                "managed by $iac (equal IDs & attributes)",
                combo["deep_equal"],
                not self.list_managed,
                False,
            ),
        )

        lines: list[str] = []
        summary: list[str] = []
        for title, groups, hide_listing, is_drift in sections:
            if not groups:
                continue
            heading = title.replace("$iac", self.iac_name)
            res_lines: list[str] = []
            res_total = 0
            for group in groups:
                res_total += len(group.resource_ids)
                if hide_listing:
                    continue
                group.resource_ids.sort()
                res_lines.append(f"  {group.provider}:{group.resource_type}:")
                res_lines.extend(f"    - {rid}" for rid in group.resource_ids)

            lines.append(f"{res_total} Resources {heading}")
            lines.extend(res_lines)
            if is_drift:
                self.drifted += res_total
            self.total += res_total
            summary.append(f" - {res_total} {heading}")

        if not lines:
            self.text = "No results"
            return

        summary.insert(0, f"Total number of resources: {self.total}")

        for groups in (combo["equal"], combo["deep_equal"], combo["different"]):
            self.covered += sum(len(g.resource_ids) for g in groups)

        self.coverage = self.covered / self.total
        coverage_text = f"{self.coverage * 100:.2f}".replace(".00", "")
        summary.append(f" - {coverage_text}% covered by {self.iac_name}")

        lines = ["=== DRIFT RESULTS  ===", *lines, "=== SUMMARY ===", *summary]

        if self.debug:
            matched = {
                f"{g.provider}:{g.resource_type}"
                for g in combo["equal"] + combo["deep_equal"] + combo["different"]
            }
            unmatched = sorted(
                key
                for key in (
                    f"{g.provider}:{g.resource_type}"
                    for g in combo["extra"] + combo["missing"]
                )
                if key not in matched
            )
            if unmatched:
                lines.append("These types weren't matched: " + ", ".join(unmatched))

        self.text = "\n".join(lines)