"""Checksum verification of downloaded provider binaries."""

from __future__ import annotations

import hashlib
import os
import platform
import sys

CHECKSUM_SEPARATOR = "  "


class ChecksumError(Exception):
    """Raised when a provider binary fails checksum validation."""


def _go_os() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "win32":
        return "windows"
    if sys.platform.startswith("freebsd"):
        return "freebsd"
    return sys.platform


def _go_arch() -> str:
    machine = platform.machine().lower()
    return {
        "x86_64": "amd64",
        "amd64": "amd64",
        "aarch64": "arm64",
        "arm64": "arm64",
        "i386": "386",
        "i686": "386",
        "x86": "386",
    }.get(machine, "arm" if machine.startswith("arm") else machine)


def sha256_file(path: str | os.PathLike) -> str:
    """Return the hex SHA-256 digest of a file's contents."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def validate_checksum_provider(
    provider_path: str | os.PathLike,
    checksum_path: str | os.PathLike,
    os_name: str | None = None,
    arch: str | None = None,
) -> str:
    """Check a provider binary against a checksums file.

    The first line whose file name mentions both the operating system and the
    architecture decides the outcome. Returns the verified digest.
    """
    os_name = os_name or _go_os()
    arch = arch or _go_arch()
    digest = sha256_file(provider_path)
    with open(checksum_path, encoding="utf-8") as fh:
        for raw_line in fh:
            line = raw_line.rstrip("\n").rstrip("\r")
            parts = line.split(CHECKSUM_SEPARATOR)
            if len(parts) != 2:
                raise ChecksumError("checksum file in incorrect format")
            expected, filename = parts
            if os_name in filename and arch in filename:
                if expected == digest:
                    return digest
                raise ChecksumError(
                    f"provider checksum invalid expected {filename} got {digest}"
                )
    raise ChecksumError(f"didn't find provider checksum vaildation for {provider_path}")