"""Provider registry: finding, downloading and verifying provider plugins."""

from __future__ import annotations

import json
import logging
import os
import platform
import sys
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Optional

from cloudquery.registry.checksum import validate_checksum_provider
from cloudquery.registry.organization import (
    DEFAULT_ORGANIZATION,
    parse_provider_name,
    provider_repo_name,
)
from cloudquery.versioning import VersionError, parse_version

VERSION_CHECK_HTTP_TIMEOUT = 10.0
GITHUB_URL = "https://github.com"
GITHUB_API_URL = "https://api.github.com"
DEFAULT_PLUGIN_DIRECTORY = os.path.join(".", ".cq", "providers")

_STATUS_IN_PROGRESS = "in_progress"
_STATUS_WARN = "warn"
_STATUS_ERROR = "error"
_STATUS_OK = "ok"

_GO_OS = {"linux": "linux", "darwin": "darwin", "win32": "windows", "cygwin": "windows"}
_GO_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
}

LatestReleaseGetter = Callable[[str, str], str]
ProgressCallback = Callable[[int, int], None]
Downloader = Callable[[str, str, Optional[ProgressCallback]], None]
SignatureVerifier = Callable[[str, str], None]


class RegistryError(Exception):
    """Raised when a provider cannot be found, downloaded or verified."""


@dataclass
class RequiredProvider:
    name: str
    version: str = ""
    source: str | None = None


@dataclass
class ProviderDetails:
    name: str
    version: str
    organization: str
    file_path: str


def _host_os() -> str:
    for prefix, name in _GO_OS.items():
        if sys.platform.startswith(prefix):
            return name
    return sys.platform


def _host_arch() -> str:
    machine = platform.machine().lower()
    return _GO_ARCH.get(machine, machine)


def _suffix(os_name: str, arch: str) -> str:
    extension = ".exe" if os_name == "windows" else ""
    return f"{os_name}_{arch}{extension}"


def binary_suffix() -> str:
    """The "<os>_<arch>" suffix of provider binaries built for this host."""
    return _suffix(_host_os(), _host_arch())


def _github_latest_release(owner: str, repo: str) -> str:
    url = f"{GITHUB_API_URL}/repos/{owner}/{repo}/releases/latest"
    request = urllib.request.Request(url, headers={"Accept": "application/vnd.github+json"})
    with urllib.request.urlopen(request, timeout=VERSION_CHECK_HTTP_TIMEOUT) as response:
        release = json.load(response)
    return release.get("tag_name") or ""


def _http_download(path: str, url: str, progress: ProgressCallback | None) -> None:
    """Download url into path through a temporary file."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = path + ".tmp"
    try:
        with urllib.request.urlopen(url) as response, open(tmp_path, "wb") as out:
            total = int(response.headers.get("Content-Length") or 0)
            done = 0
            while chunk := response.read(64 * 1024):
                out.write(chunk)
                done += len(chunk)
                if progress is not None:
                    progress(done, total)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def _key(name: str, version: str) -> str:
    return f"{name}-{version}"


def _parse_provider_source(requested: RequiredProvider) -> tuple[str, str]:
    source = requested.source or requested.name
    try:
        return parse_provider_name(source)
    except ValueError as exc:
        raise RegistryError(str(exc)) from exc


class Hub:
    """Keeps track of downloaded providers and fetches new ones.

    The network and signature operations are injectable: latest_release_getter
    returns the newest release tag of (owner, repo); downloader writes a URL to
    a path; signature_verifier raises when a detached signature is invalid.
    Without a signature verifier, provider verification fails.
    """

    def __init__(
        self,
        url: str,
        plugin_directory: str = DEFAULT_PLUGIN_DIRECTORY,
        progress_updater: Any = None,
        logger: logging.Logger | None = None,
        latest_release_getter: LatestReleaseGetter | None = None,
        downloader: Downloader | None = None,
        signature_verifier: SignatureVerifier | None = None,
        os_name: str | None = None,
        arch: str | None = None,
        release_base_url: str = GITHUB_URL,
    ) -> None:
        self.url = url
        self.plugin_directory = plugin_directory
        self.progress_updater = progress_updater
        self.logger = logger or logging.getLogger(__name__)
        self.latest_release_getter = latest_release_getter or _github_latest_release
        self.downloader = downloader or _http_download
        self.signature_verifier = signature_verifier
        self.os_name = os_name or _host_os()
        self.arch = arch or _host_arch()
        self.release_base_url = release_base_url.rstrip("/")
        self.providers: dict[str, ProviderDetails] = {}
        self._load_existing()

    @property
    def binary_suffix(self) -> str:
        return _suffix(self.os_name, self.arch)

    def _update(self, name: str, status: str, message: str, step: int) -> None:
        if self.progress_updater is not None:
            self.progress_updater.update(name, status, message, step)

    def get_provider(self, provider_name: str, provider_version: str) -> ProviderDetails:
        """Return an already downloaded provider; "latest" picks the newest one present."""
        if provider_version == "latest":
            latest = None
            latest_text = "v0.0.0"
            for details in self.providers.values():
                if details.name != provider_name:
                    continue
                try:
                    current = parse_version(details.version)
                except VersionError:
                    self.logger.warning(
                        "bad version provider exists in directory: %s %s",
                        details.name,
                        details.version,
                    )
                    continue
                if latest is None or latest < current:
                    latest, latest_text = current, details.version
            provider_version = latest_text

        details = self.providers.get(_key(provider_name, provider_version))
        if details is None:
            raise RegistryError(
                f"provider {provider_name}@{provider_version} is missing, download it first"
            )
        return details

    def verify_provider(self, organization: str, provider_name: str, version: str) -> bool:
        """Check the signed checksums of a downloaded provider binary."""
        if organization != DEFAULT_ORGANIZATION:
            self._update(provider_name, _STATUS_WARN, "skipped community provider verification...", 2)
            return True

        repo = provider_repo_name(provider_name)
        checksums_path = os.path.join(
            self.plugin_directory, organization, provider_name, version + ".checksums.txt"
        )
        if version == "latest":
            checksums_url = f"{self.release_base_url}/{organization}/{repo}/releases/latest/download/checksums.txt"
        else:
            checksums_url = f"{self.release_base_url}/{organization}/{repo}/releases/download/{version}/checksums.txt"

        self._update(provider_name, _STATUS_IN_PROGRESS, "Verifying...", 1)
        self.logger.debug("downloading checksums file %s to %s", checksums_url, checksums_path)
        try:
            self.downloader(checksums_path, checksums_url, None)
        except Exception as exc:
            self.logger.error("failed to download checksums file for %s: %s", provider_name, exc)
            return False
        try:
            self.downloader(checksums_path + ".sig", checksums_url + ".sig", None)
        except Exception as exc:
            self.logger.error("failed to download signature file for %s: %s", provider_name, exc)
            return False

        try:
            if self.signature_verifier is None:
                raise RegistryError("no signature verifier configured")
            self.signature_verifier(checksums_path, checksums_path + ".sig")
        except Exception as exc:
            self.logger.error("validating provider signature failed for %s: %s", provider_name, exc)
            self._update(provider_name, _STATUS_ERROR, "Bad signature", 0)
            return False

        provider_path = self._provider_path(organization, provider_name, version)
        try:
            validate_checksum_provider(provider_path, checksums_path, self.os_name, self.arch)
        except Exception as exc:
            self.logger.error("validating provider checksum failed for %s: %s", provider_name, exc)
            self._update(provider_name, _STATUS_ERROR, "Bad checksum", 0)
            return False

        self._update(provider_name, _STATUS_OK, "verified", 1)
        return True

    def check_provider_update(self, requested_provider: RequiredProvider) -> str:
        """Return a newer released version of the provider, or "" if there is none."""
        organization, provider_name = _parse_provider_source(requested_provider)
        try:
            current = parse_version(requested_provider.version)
        except VersionError:
            raise RegistryError(
                f"bad version: provider {provider_name}, version {requested_provider.version}"
            ) from None

        latest_text = self.latest_release_getter(organization, provider_repo_name(provider_name))
        try:
            latest = parse_version(latest_text)
        except VersionError:
            raise RegistryError(
                f"bad version received: provider {provider_name}, version {latest_text}"
            ) from None
        return latest_text if current < latest else ""

    def download_provider(
        self, requested_provider: RequiredProvider, no_verify: bool
    ) -> ProviderDetails:
        """Download the provider unless present, verifying it unless told not to."""
        provider_version = requested_provider.version
        organization, provider_name = _parse_provider_source(requested_provider)

        if provider_version == "latest":
            provider_version = self.latest_release_getter(
                organization, provider_repo_name(provider_name)
            )

        details = self.providers.get(_key(provider_name, provider_version))
        if details is None:
            return self._download(organization, provider_name, provider_version, no_verify)

        if self.progress_updater is not None:
            self.progress_updater.add(
                provider_name,
                f"{provider_repo_name(provider_name)}@{provider_version}",
                provider_version,
                2,
            )

        if no_verify:
            self._update(provider_name, _STATUS_WARN, "skipped verification...", 2)
            return details

        if not self.verify_provider(organization, provider_name, provider_version):
            raise RegistryError(f"provider {provider_name}@{provider_version} verification failed")
        return details

    def _download(
        self, organization: str, provider_name: str, provider_version: str, no_verify: bool
    ) -> ProviderDetails:
        if not self._verify_registered(organization, provider_name, provider_version, no_verify):
            raise RegistryError(
                f"provider plugin {provider_name}@{provider_version} not registered in the provider registry"
            )

        os.makedirs(os.path.join(self.plugin_directory, organization, provider_name), exist_ok=True)

        progress: ProgressCallback | None = None
        if self.progress_updater is not None:
            label = f"{provider_repo_name(provider_name)}@{provider_version}"
            updater = self.progress_updater

            def progress(done: int, total: int) -> None:
                updater.update(provider_name, _STATUS_IN_PROGRESS, f"{label} {done}/{total}", 0)

        repo = provider_repo_name(provider_name)
        binary = f"{repo}_{self.binary_suffix}"
        provider_url = (
            f"{self.release_base_url}/{organization}/{repo}/releases/download/{provider_version}/{binary}"
        )
        provider_path = self._provider_path(organization, provider_name, provider_version)
        try:
            self.downloader(provider_path, provider_url, progress)
        except Exception as exc:
            raise RegistryError(
                f"plugin {organization}/{provider_name}@{provider_version} failed to download: {exc}"
            ) from exc

        if not self.verify_provider(organization, provider_name, provider_version):
            raise RegistryError(
                f"plugin {organization}/{provider_name}@{provider_version} failed to verify"
            )

        os.chmod(provider_path, 0o754)
        details = ProviderDetails(
            name=provider_name,
            version=provider_version,
            organization=organization,
            file_path=provider_path,
        )
        self.providers[_key(provider_name, provider_version)] = details
        return details

    def _verify_registered(
        self, organization: str, provider_name: str, version: str, no_verify: bool
    ) -> bool:
        if no_verify:
            self.logger.warning("skipping plugin registry verification for %s", provider_name)
            return True
        self.logger.debug("verifying provider plugin %s@%s is registered", provider_name, version)
        if not self._is_provider_registered(organization, provider_name):
            return False
        self.logger.debug("provider plugin %s@%s is registered", provider_name, version)
        return True

    def _is_provider_registered(self, organization: str, provider: str) -> bool:
        url = self.url.replace("%s", organization, 1).replace("%s", provider, 1)
        try:
            with urllib.request.urlopen(url, timeout=VERSION_CHECK_HTTP_TIMEOUT) as response:
                return response.status == 200
        except urllib.error.HTTPError:
            return False
        except (urllib.error.URLError, OSError, ValueError) as exc:
            self.logger.error("failed to check if provider is registered: %s", exc)
            return False

    def _provider_path(self, organization: str, name: str, version: str) -> str:
        return os.path.join(
            self.plugin_directory, organization, name, f"{version}-{self.binary_suffix}"
        )

    def _load_existing(self) -> None:
        suffix = self.binary_suffix
        for dirpath, _, filenames in os.walk(self.plugin_directory):
            for filename in filenames:
                if "checksums" in filename:
                    continue
                path = os.path.join(dirpath, filename)
                provider = os.path.basename(dirpath)
                if path.endswith(".tmp"):
                    self.logger.debug("found temp provider file, cleaning up: %s", provider)
                    try:
                        os.remove(path)
                    except OSError:
                        self.logger.warning("failed to remove temp provider file: %s", provider)
                    continue
                organization = os.path.basename(os.path.dirname(dirpath))
                version = filename.split("-" + suffix)[0]
                self.providers[_key(provider, version)] = ProviderDetails(
                    name=provider,
                    version=version,
                    organization=organization,
                    file_path=path,
                )
                self.logger.debug("found existing provider %s %s", provider, version)