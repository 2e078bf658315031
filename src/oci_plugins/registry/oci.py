"""OCI distribution API implementation of :class:`RegistryClient`.

Plugins live under a single repository prefix, for example
``registry.example.com/tools/plugins``; the plugin ``demo`` is the
repository ``tools/plugins/demo`` on that registry.

Classes
-------
- RegistryAuth        Basic credentials for a registry host.
- OCIRegistryClient   httpx-backed client: tags, catalog, labels, layers.

Functions
---------
- resolve_auth          Pick credentials by priority.
- split_registry_repo   Host and repository prefix of a registry path.
"""
from __future__ import annotations

import base64
import gzip
import io
import json
import logging
import os
import platform
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

import httpx

from oci_plugins.errors import RegistryError
from oci_plugins.registry.client import LayerHandler, LayerStream, RegistryClient

logger = logging.getLogger(__name__)

LICENSE_TOKEN_USER: str = "license-token"

_INDEX_MEDIA_TYPES = (
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
)
_MANIFEST_MEDIA_TYPES = (
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
)
_ACCEPT = ", ".join(_INDEX_MEDIA_TYPES + _MANIFEST_MEDIA_TYPES)

_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistryAuth:
    """Basic credentials for one registry host."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"RegistryAuth(username={self.username!r}, password='***')"


def _docker_config_path() -> Path:
    config_dir = os.environ.get("DOCKER_CONFIG")
    if config_dir:
        return Path(config_dir) / "config.json"
    return Path.home() / ".docker" / "config.json"


def _docker_config_auth(host: str, config_path: Path) -> RegistryAuth | None:
    try:
        document = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable Docker config %s: %s", config_path, exc)
        return None

    entry = (document.get("auths") or {}).get(host)
    if not entry:
        return None
    if entry.get("auth"):
        try:
            decoded = base64.b64decode(entry["auth"]).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            logger.warning("Ignoring malformed auth entry for %s in %s", host, config_path)
            return None
        username, _, password = decoded.partition(":")
        return RegistryAuth(username, password)
    if entry.get("username"):
        return RegistryAuth(entry["username"], entry.get("password", ""))
    return None


def resolve_auth(
    host: str,
    *,
    login: str = "",
    password: str = "",
    license_token: str = "",
    docker_config: Path | None = None,
) -> RegistryAuth | None:
    """Pick registry credentials.

    Priority: an explicit login (with its password), then a license
    token (sent with the ``license-token`` user), then the host's entry
    in the Docker config file.  ``None`` means anonymous access.
    """
    if login:
        logger.debug("Using explicit credentials for %s", host)
        return RegistryAuth(login, password)
    if license_token:
        logger.debug("Using license token for %s", host)
        return RegistryAuth(LICENSE_TOKEN_USER, license_token)
    auth = _docker_config_auth(host, docker_config or _docker_config_path())
    if auth is not None:
        logger.debug("Using Docker config credentials for %s", host)
        return auth
    logger.debug("Using anonymous access for %s", host)
    return None


def split_registry_repo(registry_repo: str) -> tuple[str, str]:
    """Split ``[scheme://]host[:port]/prefix`` into host and prefix."""
    repo = registry_repo.strip().rstrip("/")
    for scheme in ("https://", "http://"):
        if repo.startswith(scheme):
            repo = repo[len(scheme):]
    host, _, prefix = repo.partition("/")
    if not host:
        raise RegistryError(f"invalid registry repository: {registry_repo!r}")
    return host, prefix


# ---------------------------------------------------------------------------
# Layer reader
# ---------------------------------------------------------------------------


class _ResponseReader(io.RawIOBase):
    """Raw file object over a streamed httpx response body."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._chunks = response.iter_bytes()
        self._buffer = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b: Any) -> int:
        while not self._buffer:
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(b), len(self._buffer))
        b[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


class _LayerReader(io.BufferedIOBase):
    """Decompressing reader that also closes the underlying response."""

    def __init__(self, raw: _ResponseReader, compressed: bool) -> None:
        self._raw = raw
        buffered = io.BufferedReader(raw)
        self._inner: BinaryIO = gzip.GzipFile(fileobj=buffered) if compressed else buffered

    def readable(self) -> bool:
        return True

    def read(self, size: int | None = -1) -> bytes:
        return self._inner.read(-1 if size is None else size)

    def read1(self, size: int = -1) -> bytes:
        return self._inner.read(size)

    def close(self) -> None:
        if not self.closed:
            self._inner.close()
            self._raw.close()
        super().close()


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class OCIRegistryClient(RegistryClient):
    """Registry client speaking the OCI distribution HTTP API.

    Parameters
    ----------
    registry_repo:
        ``host[:port]/prefix`` the plugin repositories live under.
    auth:
        Basic credentials, used directly or to obtain bearer tokens.
    insecure:
        Use plain HTTP.
    tls_skip_verify:
        Do not verify TLS certificates.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional httpx transport, mainly for tests.
    """

    def __init__(
        self,
        registry_repo: str,
        *,
        auth: RegistryAuth | None = None,
        insecure: bool = False,
        tls_skip_verify: bool = False,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._host, self._prefix = split_registry_repo(registry_repo)
        self._auth = auth
        scheme = "http" if insecure else "https"
        self._http = httpx.Client(
            base_url=f"{scheme}://{self._host}",
            verify=not tls_skip_verify,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )
        self._tokens: dict[str, str] = {}

    @property
    def host(self) -> str:
        return self._host

    @property
    def prefix(self) -> str:
        return self._prefix

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> OCIRegistryClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def repository(self, plugin_name: str) -> str:
        return f"{self._prefix}/{plugin_name}" if self._prefix else plugin_name

    # ------------------------------------------------------------------
    # RegistryClient
    # ------------------------------------------------------------------

    def list_tags(self, plugin_name: str) -> list[str]:
        repo = self.repository(plugin_name)
        tags: list[str] = []
        url: str | None = f"/v2/{repo}/tags/list"
        while url:
            response = self._get(url, scope=f"repository:{repo}:pull")
            tags.extend(response.json().get("tags") or [])
            url = response.links.get("next", {}).get("url")
        return tags

    def list_plugins(self) -> list[str]:
        names: list[str] = []
        prefix = f"{self._prefix}/" if self._prefix else ""
        url: str | None = "/v2/_catalog"
        while url:
            response = self._get(url, scope="registry:catalog:*")
            for repo in response.json().get("repositories") or []:
                if not repo.startswith(prefix):
                    continue
                name = repo[len(prefix):]
                if name and "/" not in name:
                    names.append(name)
            url = response.links.get("next", {}).get("url")
        return names

    def get_label(self, plugin_name: str, tag: str, label_key: str) -> tuple[str, bool]:
        repo = self.repository(plugin_name)
        manifest = self._image_manifest(repo, tag)
        config_digest = (manifest.get("config") or {}).get("digest")
        if not config_digest:
            raise RegistryError(f"manifest of {repo}:{tag} has no config blob")
        config = self._get(f"/v2/{repo}/blobs/{config_digest}", scope=f"repository:{repo}:pull").json()
        labels = (config.get("config") or {}).get("Labels") or {}
        if label_key not in labels:
            return "", False
        return labels[label_key], True

    def extract_image_layers(self, plugin_name: str, tag: str, handler: LayerHandler) -> None:
        repo = self.repository(plugin_name)
        layers = self._image_manifest(repo, tag).get("layers") or []
        total = len(layers)
        for index, layer in enumerate(layers, start=1):
            media_type = layer.get("mediaType", "")
            if "zstd" in media_type:
                raise RegistryError(f"unsupported layer media type: {media_type}")
            response = self._get(
                f"/v2/{repo}/blobs/{layer['digest']}",
                scope=f"repository:{repo}:pull",
                stream=True,
            )
            reader = _LayerReader(_ResponseReader(response), compressed=media_type.endswith("gzip"))
            handler(LayerStream(index=index, total=total, reader=reader))

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def _image_manifest(self, repo: str, reference: str) -> dict[str, Any]:
        scope = f"repository:{repo}:pull"
        response = self._get(
            f"/v2/{repo}/manifests/{reference}", scope=scope, headers={"Accept": _ACCEPT}
        )
        manifest = response.json()
        media_type = manifest.get("mediaType") or response.headers.get("content-type", "")
        if media_type.split(";")[0] not in _INDEX_MEDIA_TYPES and "manifests" not in manifest:
            return manifest

        entry = self._select_platform(manifest.get("manifests") or [])
        if entry is None:
            raise RegistryError(f"image index of {repo}:{reference} has no manifests")
        logger.debug("Resolved index %s:%s to %s", repo, reference, entry["digest"])
        response = self._get(
            f"/v2/{repo}/manifests/{entry['digest']}", scope=scope, headers={"Accept": _ACCEPT}
        )
        return response.json()

    @staticmethod
    def _select_platform(entries: list[dict[str, Any]]) -> dict[str, Any] | None:
        if not entries:
            return None
        arch = _ARCH_ALIASES.get(platform.machine().lower(), platform.machine().lower())
        for entry in entries:
            plat = entry.get("platform") or {}
            if plat.get("os") == "linux" and plat.get("architecture") == arch:
                return entry
        return entries[0]

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _get(
        self,
        url: str,
        *,
        scope: str,
        headers: dict[str, str] | None = None,
        stream: bool = False,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        token = self._tokens.get(scope)
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        response = self._send(url, request_headers, stream)
        if response.status_code == 401:
            challenge = response.headers.get("www-authenticate", "")
            response.close()
            request_headers.update(self._authorize(challenge, scope))
            response = self._send(url, request_headers, stream)

        if response.status_code >= 400:
            if stream:
                response.read()
            response.close()
            raise RegistryError(
                f"GET {url} returned {response.status_code}: {response.text.strip()[:200]}"
            )
        return response

    def _send(self, url: str, headers: dict[str, str], stream: bool) -> httpx.Response:
        try:
            request = self._http.build_request("GET", url, headers=headers)
            return self._http.send(request, stream=stream)
        except httpx.HTTPError as exc:
            raise RegistryError(f"request to {self._host} failed: {exc}") from exc

    def _authorize(self, challenge: str, scope: str) -> dict[str, str]:
        scheme, _, params_text = challenge.partition(" ")
        scheme = scheme.lower()
        if scheme == "basic":
            if self._auth is None:
                raise RegistryError(f"registry {self._host} requires credentials")
            return {"Authorization": self._basic_header()}
        if scheme != "bearer":
            raise RegistryError(f"unsupported authentication challenge: {challenge!r}")

        params = dict(_CHALLENGE_PARAM_RE.findall(params_text))
        realm = params.get("realm")
        if not realm:
            raise RegistryError(f"bearer challenge without realm: {challenge!r}")
        query = {"scope": params.get("scope", scope)}
        if params.get("service"):
            query["service"] = params["service"]
        token_headers = {"Authorization": self._basic_header()} if self._auth else {}

        try:
            response = self._http.get(realm, params=query, headers=token_headers)
        except httpx.HTTPError as exc:
            raise RegistryError(f"token request to {realm} failed: {exc}") from exc
        if response.status_code >= 400:
            raise RegistryError(f"token request to {realm} returned {response.status_code}")
        body = response.json()
        token = body.get("token") or body.get("access_token")
        if not token:
            raise RegistryError(f"token response from {realm} has no token")
        self._tokens[scope] = token
        return {"Authorization": f"Bearer {token}"}

    def _basic_header(self) -> str:
        assert self._auth is not None
        raw = f"{self._auth.username}:{self._auth.password}".encode()
        return "Basic " + base64.b64encode(raw).decode("ascii")

    def __repr__(self) -> str:
        return f"OCIRegistryClient(host={self._host!r}, prefix={self._prefix!r})"


__all__ = [
    "LICENSE_TOKEN_USER",
    "OCIRegistryClient",
    "RegistryAuth",
    "resolve_auth",
    "split_registry_repo",
]
