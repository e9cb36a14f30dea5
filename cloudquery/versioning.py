"""Version numbers and version constraints."""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import Callable, Iterator

_PART = r"[0-9A-Za-z\-~]+"
_VERSION_RAW = (
    r"v?(?P<segments>[0-9]+(?:\.[0-9]+)*?)"
    r"(?:-(?P<pre_num>[0-9]+[0-9A-Za-z\-~]*(?:\." + _PART + r")*)"
    r"|(?:-?(?P<pre_alpha>[A-Za-z\-~]+[0-9A-Za-z\-~]*(?:\." + _PART + r")*)))?"
    r"(?:\+(?P<meta>" + _PART + r"(?:\." + _PART + r")*))?"
)
_VERSION_RE = re.compile(_VERSION_RAW)
_CONSTRAINT_RE = re.compile(
    r"\s*(?P<op>~>|>=|<=|!=|>|<|=)?\s*(?P<version>" + _VERSION_RAW + r")\s*"
)
_INT64_MAX = 2**63 - 1


class VersionError(ValueError):
    """Raised for malformed versions or constraints."""


def _compare_part(self_part: str, other_part: str) -> int:
    if self_part == other_part:
        return 0
    self_numeric = self_part.isdigit()
    other_numeric = other_part.isdigit()
    if self_part == "":
        return -1 if other_numeric else 1
    if other_part == "":
        return 1 if self_numeric else -1
    if self_numeric and not other_numeric:
        return -1
    if not self_numeric and other_numeric:
        return 1
    if not self_numeric and not other_numeric:
        return 1 if self_part > other_part else -1
    return 1 if int(self_part) > int(other_part) else -1


def _compare_prereleases(a: str, b: str) -> int:
    if a == b:
        return 0
    a_parts, b_parts = a.split("."), b.split(".")
    for i in range(max(len(a_parts), len(b_parts))):
        left = a_parts[i] if i < len(a_parts) else ""
        right = b_parts[i] if i < len(b_parts) else ""
        result = _compare_part(left, right)
        if result:
            return result
    return 0


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """A parsed version: numeric segments, pre-release and metadata."""

    original: str
    segments: tuple[int, ...]
    significant: int
    pre: str = ""
    metadata: str = ""

    def prerelease(self) -> str:
        return self.pre

    def compare(self, other: Version) -> int:
        """Return -1, 0 or 1 as this version is lower, equal or higher."""
        if str(self) == str(other):
            return 0
        mine, theirs = self.segments, other.segments
        if mine == theirs:
            if not self.pre and not other.pre:
                return 0
            if not self.pre:
                return 1
            if not other.pre:
                return -1
            return _compare_prereleases(self.pre, other.pre)
        for i in range(max(len(mine), len(theirs))):
            if i >= len(mine):
                return -1 if any(theirs[i:]) else 0
            if i >= len(theirs):
                return 1 if any(mine[i:]) else 0
            if mine[i] != theirs[i]:
                return -1 if mine[i] < theirs[i] else 1
        return 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        segments = list(self.segments)
        while segments and segments[-1] == 0:
            segments.pop()
        return hash(tuple(segments))

    def __str__(self) -> str:
        text = ".".join(str(s) for s in self.segments)
        if self.pre:
            text += f"-{self.pre}"
        if self.metadata:
            text += f"+{self.metadata}"
        return text


def _from_match(match: re.Match, original: str) -> Version:
    segments = []
    for part in match.group("segments").split("."):
        value = int(part)
        if value > _INT64_MAX:
            raise VersionError(f"Error parsing version: {original}")
        segments.append(value)
    significant = len(segments)
    segments.extend([0] * (3 - len(segments)))
    return Version(
        original=original,
        segments=tuple(segments),
        significant=significant,
        pre=match.group("pre_alpha") or match.group("pre_num") or "",
        metadata=match.group("meta") or "",
    )


def parse_version(text: str) -> Version:
    """Parse a version string such as "1.2", "v1.2.3" or "1.2.3-beta+build"."""
    match = _VERSION_RE.fullmatch(text)
    if match is None:
        raise VersionError(f"Malformed version: {text}")
    return _from_match(match, text)


def _prerelease_check(v: Version, c: Version) -> bool:
    if c.pre and v.pre:
        return c.segments == v.segments
    if not c.pre and v.pre:
        return False
    return True


def _pessimistic(v: Version, c: Version) -> bool:
    if not _prerelease_check(v, c) or (c.pre and not v.pre):
        return False
    if v < c:
        return False
    count = len(c.segments)
    if count > len(v.segments):
        return False
    if any(v.segments[i] != c.segments[i] for i in range(c.significant - 1)):
        return False
    return c.segments[count - 1] <= v.segments[count - 1]


_OPERATORS: dict[str, Callable[[Version, Version], bool]] = {
    "": lambda v, c: v == c,
    "=": lambda v, c: v == c,
    "!=": lambda v, c: v != c,
    ">": lambda v, c: _prerelease_check(v, c) and v.compare(c) == 1,
    "<": lambda v, c: _prerelease_check(v, c) and v.compare(c) == -1,
    ">=": lambda v, c: _prerelease_check(v, c) and v.compare(c) >= 0,
    "<=": lambda v, c: _prerelease_check(v, c) and v.compare(c) <= 0,
    "~>": _pessimistic,
}


@dataclass(frozen=True)
class _Constraint:
    operator: str
    version: Version
    original: str

    def check(self, version: Version) -> bool:
        return _OPERATORS[self.operator](version, self.version)


@dataclass(frozen=True)
class Constraints:
    """A set of comma-separated constraints, all of which must hold."""

    items: tuple[_Constraint, ...]

    def check(self, version: Version) -> bool:
        return all(c.check(version) for c in self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[_Constraint]:
        return iter(self.items)

    def __str__(self) -> str:
        return ", ".join(c.original for c in self.items)


def parse_constraints(text: str) -> Constraints:
    """Parse constraints such as ">= 1.0, < 2.0" or "~> 1.2"."""
    items = []
    for single in text.split(","):
        match = _CONSTRAINT_RE.fullmatch(single)
        if match is None:
            raise VersionError(f"Malformed constraint: {single}")
        version_text = match.group("version")
        version = parse_version(version_text)
        items.append(_Constraint(match.group("op") or "", version, single))
    return Constraints(tuple(items))