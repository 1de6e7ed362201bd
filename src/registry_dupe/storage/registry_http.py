"""
Registry HTTP client for the Docker Registry v2 / OCI Distribution API.

Implements the registry capability over httpx with the standard auth flow:
requests go out anonymously (or with a cached credential), and a 401 answer
is resolved by following the ``WWW-Authenticate`` challenge, either
exchanging credentials for a Bearer token or switching to Basic auth.
"""
from __future__ import annotations

import base64
import io
import json
import logging
import os
import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, FrozenSet, Iterable, Iterator, Optional, Tuple, Union
from urllib.parse import urljoin, urlparse

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import (
    RegistryAuthError,
    RegistryError,
    RegistryNotFound,
    RegistryRateLimited,
    UnsupportedMediaType,
)
from ..models import ACCEPTED_MANIFEST_TYPES, Manifest

logger = logging.getLogger(__name__)

USER_AGENT = "registry-dupe/0.1.0"
CHUNK_SIZE = 1024 * 1024  # 1 MiB

# Token lifetime assumed when the auth server omits expires_in
DEFAULT_TOKEN_TTL_S = 60

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


class DockerAuth:
    """Look up registry credentials in the Docker client config file."""

    def __init__(self, config_path: Optional[Path] = None):
        if config_path is None:
            config_dir = os.getenv("DOCKER_CONFIG", str(Path.home() / ".docker"))
            config_path = Path(config_dir) / "config.json"
        self.config_path = config_path
        self._config_cache: Optional[dict] = None
        self._config_mtime: Optional[float] = None

    def get_credentials(self, registry: str) -> Optional[Tuple[str, str]]:
        """
        Get credentials for registry from Docker config.

        Returns: (username, password) or None if not found
        """
        config = self._load_config()
        if not config:
            return None

        auths = config.get("auths", {})
        host = registry.replace("https://", "").replace("http://", "").rstrip("/")

        # Exact match first, then with either scheme prefix
        auth_entry = None
        for key in (registry, host, f"https://{host}", f"http://{host}"):
            if key in auths:
                auth_entry = auths[key]
                break
        if auth_entry is None:
            return None

        # base64 "user:password" in the auth field
        if "auth" in auth_entry:
            try:
                decoded = base64.b64decode(auth_entry["auth"]).decode()
            except (ValueError, UnicodeDecodeError):
                logger.debug(f"Ignoring undecodable auth entry for {host}")
            else:
                if ":" in decoded:
                    username, password = decoded.split(":", 1)
                    return (username, password)

        if "username" in auth_entry and "password" in auth_entry:
            return (auth_entry["username"], auth_entry["password"])

        return None

    def _load_config(self) -> Optional[dict]:
        """Load Docker config with caching and mtime checking."""
        if not self.config_path.exists():
            return None

        try:
            current_mtime = self.config_path.stat().st_mtime

            if (self._config_cache is not None and
                    self._config_mtime is not None and
                    current_mtime == self._config_mtime):
                return self._config_cache

            with open(self.config_path, 'r') as f:
                config = json.load(f)
        except (OSError, ValueError) as e:
            logger.debug(f"Failed to read Docker config {self.config_path}: {e}")
            return None

        self._config_cache = config
        self._config_mtime = current_mtime
        return config


@dataclass(frozen=True)
class _CachedToken:
    header: str
    actions: FrozenSet[str]
    expiry: float


class _ResponseStream(io.RawIOBase):
    """Binary file object over a streamed httpx response; closing it releases the connection."""

    def __init__(self, response: httpx.Response, chunk_size: int = CHUNK_SIZE):
        super().__init__()
        self._response = response
        # Raw bytes: blobs must reach the destination exactly as stored
        self._chunks = response.iter_raw(chunk_size)
        self._buffer = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._buffer:
            chunk = next(self._chunks, None)
            if chunk is None:
                return 0
            self._buffer = chunk
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        self._buffer = self._buffer[n:]
        return n

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


def _iter_stream(stream: Union[BinaryIO, Iterable[bytes]]) -> Iterator[bytes]:
    """Yield request body chunks from a file-like object or an iterable of bytes."""
    if hasattr(stream, "read"):
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    else:
        for chunk in stream:
            if chunk:
                yield chunk


def _parse_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    """Split a WWW-Authenticate header into (scheme, params)."""
    scheme = header.split(" ", 1)[0].strip().lower()
    params = {m.group(1): m.group(2) for m in _CHALLENGE_PARAM.finditer(header)}
    return scheme, params


def _scope_actions(scope: Optional[str]) -> FrozenSet[str]:
    """Actions granted by a scope string such as ``repository:foo:pull,push``."""
    actions = set()
    for item in (scope or "").split():
        parts = item.split(":")
        if len(parts) >= 3:
            actions.update(a for a in parts[-1].split(",") if a)
    return frozenset(actions)


class RegistryHTTP:
    """
    HTTP registry handle.

    One instance serves one registry and is shared by all workers: the
    underlying httpx client is thread-safe and the token cache is guarded
    by a lock.
    """

    def __init__(self, base_url: str, username: Optional[str] = None,
                 password: Optional[str] = None, *, insecure: bool = False,
                 timeout_s: float = 30.0, retries: int = 0,
                 auth: Optional[DockerAuth] = None,
                 transport: Optional[httpx.BaseTransport] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize registry HTTP client.

        Args:
            base_url: Registry URL or host[:port] (e.g. "localhost:5000",
                "https://registry.example.com")
            username: Explicit username (falls back to Docker config)
            password: Explicit password
            insecure: Use plain HTTP for bare hosts and skip TLS verification
            timeout_s: Timeout for each network operation
            retries: Extra attempts for idempotent metadata requests on timeouts
            auth: Docker config credential lookup
            transport: Custom httpx transport (tests)
            logger: Logger to use instead of the module logger
        """
        if insecure and not base_url.startswith("http"):
            self.base_url = f"http://{base_url}"
        elif not base_url.startswith("http"):
            self.base_url = f"https://{base_url}"
        else:
            self.base_url = base_url
        self.base_url = self.base_url.rstrip("/")
        self.host = urlparse(self.base_url).netloc
        self.insecure = insecure
        self.retries = retries
        self.log = logger or logging.getLogger(__name__)

        if username:
            self._credentials: Optional[Tuple[str, str]] = (username, password or "")
        else:
            self._credentials = (auth or DockerAuth()).get_credentials(self.host)

        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout_s),
            follow_redirects=True,
            verify=not insecure,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

        # repository ("" for registry-wide) -> token
        self._tokens: Dict[str, _CachedToken] = {}
        self._basic_header: Optional[str] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"RegistryHTTP({self.base_url!r})"

    # Registry capability

    def connect(self) -> None:
        """Ping ``/v2/`` and complete the auth flow if the registry asks for it."""
        self.log.debug(f"Connecting to registry {self.base_url}")
        response = self._send("GET", "/v2/", repo="")
        self._check(response, f"registry {self.base_url}")

    def fetch_manifest(self, name: str, tag: str) -> Manifest:
        """GET manifest ``name:tag`` and keep the bytes exactly as served."""
        headers = {"Accept": ", ".join(ACCEPTED_MANIFEST_TYPES)}
        response = self._send("GET", f"/v2/{name}/manifests/{tag}", repo=name, headers=headers)
        self._check(response, f"manifest {name}:{tag}")
        return Manifest.from_payload(
            name, tag, response.content, response.headers.get("Content-Type")
        )

    def has_layer(self, name: str, digest: str) -> bool:
        """HEAD the blob; 404 means absent, any other failure raises."""
        response = self._send("HEAD", f"/v2/{name}/blobs/{digest}", repo=name)
        if response.status_code == 404:
            return False
        self._check(response, f"blob {name}@{digest}")
        return True

    def open_layer_reader(self, name: str, digest: str) -> Tuple[BinaryIO, int]:
        """Open a streamed GET on the blob; returns (stream, length or -1)."""
        response = self._send("GET", f"/v2/{name}/blobs/{digest}", repo=name, stream=True)
        self._check(response, f"blob {name}@{digest}")

        length = response.headers.get("Content-Length")
        try:
            total = int(length) if length is not None else -1
        except ValueError:
            total = -1
        return _ResponseStream(response), total

    def upload_layer(self, name: str, digest: str,
                     stream: Union[BinaryIO, Iterable[bytes]],
                     size: Optional[int] = None) -> None:
        """
        Monolithic blob upload: POST an upload session, then PUT the body with
        ``?digest=``. The body is streamed and cannot be replayed, so the PUT
        is neither retried nor re-authenticated.
        """
        response = self._send("POST", f"/v2/{name}/blobs/uploads/", repo=name)
        self._check(response, f"blob upload session for {name}@{digest}")

        location = response.headers.get("Location")
        if not location:
            raise RegistryError(f"Registry did not return an upload location for {name}@{digest}")
        upload_url = httpx.URL(urljoin(self.base_url + "/", location)).copy_merge_params(
            {"digest": digest}
        )

        headers = {"Content-Type": "application/octet-stream"}
        if size is not None and size >= 0:
            headers["Content-Length"] = str(size)

        self.log.debug(f"Uploading blob {digest} to {self.host}/{name}")
        response = self._send(
            "PUT", str(upload_url), repo=name, headers=headers,
            content=_iter_stream(stream), replayable=False,
        )
        self._check(response, f"blob {name}@{digest}")

    def put_manifest(self, name: str, tag: str, manifest: Manifest) -> str:
        """PUT the raw manifest payload with its original media type."""
        headers = {"Content-Type": manifest.media_type}
        response = self._send(
            "PUT", f"/v2/{name}/manifests/{tag}", repo=name,
            headers=headers, content=manifest.payload,
        )
        self._check(response, f"manifest {name}:{tag}")
        return response.headers.get("Docker-Content-Digest") or manifest.digest

    # Request plumbing

    def _send(self, method: str, path: str, *, repo: Optional[str] = None,
              headers: Optional[dict] = None,
              content: Union[bytes, Iterable[bytes], None] = None,
              stream: bool = False, replayable: bool = True) -> httpx.Response:
        """
        Send a request with transparent registry auth.

        A 401 on a replayable request is answered by following the challenge
        and sending the request once more with the new credential.
        """
        url = path if path.startswith(("http://", "https://")) else f"{self.base_url}{path}"
        request_headers = dict(headers or {})
        authorization = self._cached_authorization(repo)
        if authorization:
            request_headers["Authorization"] = authorization

        try:
            response = self._dispatch(method, url, request_headers, content, stream)
            if response.status_code == 401 and replayable:
                challenge = response.headers.get("WWW-Authenticate", "")
                authorization = self._authorize(challenge, repo)
                if authorization:
                    response.close()
                    request_headers["Authorization"] = authorization
                    response = self._dispatch(method, url, request_headers, content, stream)
        except httpx.HTTPError as e:
            raise RegistryError(f"Network error on {method} {url}: {e}") from e
        return response

    def _dispatch(self, method: str, url: str, headers: dict,
                  content: Union[bytes, Iterable[bytes], None],
                  stream: bool) -> httpx.Response:
        def send() -> httpx.Response:
            request = self.client.build_request(method, url, headers=headers, content=content)
            return self.client.send(request, stream=stream)

        # Only idempotent metadata requests are retried; blob bodies never are
        if method in ("GET", "HEAD") and not stream:
            return self._retrying()(send)
        return send()

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(httpx.TimeoutException),
            reraise=True,
        )

    def _check(self, response: httpx.Response, what: str) -> None:
        """Map an unsuccessful response to the registry error taxonomy."""
        if response.is_success:
            return

        code = response.status_code
        try:
            detail = response.read().decode("utf-8", errors="replace")[:200].strip()
        except httpx.HTTPError:
            detail = ""
        finally:
            response.close()
        suffix = f": {detail}" if detail else ""

        if code in (401, 403):
            raise RegistryAuthError(f"Authentication failed for {what} (HTTP {code}){suffix}", code)
        if code == 404:
            raise RegistryNotFound(f"Not found: {what}", code)
        if code == 415:
            raise UnsupportedMediaType(f"Unsupported media type for {what}{suffix}", code)
        if code == 429:
            raise RegistryRateLimited(f"Rate limited while accessing {what}", code)
        raise RegistryError(f"Registry error {code} for {what}{suffix}", code)

    # Auth

    def _cached_authorization(self, repo: Optional[str]) -> Optional[str]:
        with self._lock:
            if self._basic_header:
                return self._basic_header
            cached = self._tokens.get(repo or "")
            if cached and time.time() < cached.expiry - 5:
                return cached.header
        return None

    def _authorize(self, challenge: str, repo: Optional[str]) -> Optional[str]:
        """Answer a WWW-Authenticate challenge; returns the Authorization header value."""
        scheme, params = _parse_challenge(challenge)

        if scheme == "basic":
            if not self._credentials:
                return None
            username, password = self._credentials
            encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
            header = f"Basic {encoded}"
            with self._lock:
                self._basic_header = header
            self.log.debug(f"Using basic auth for {self.host}")
            return header

        if scheme == "bearer":
            realm = params.get("realm")
            if not realm:
                return None
            scope = params.get("scope")
            token, expires_in = self._fetch_token(realm, params.get("service"), scope)
            header = f"Bearer {token}"
            self._store_token(repo or "", header, _scope_actions(scope), time.time() + expires_in)
            return header

        return None

    def _fetch_token(self, realm: str, service: Optional[str],
                     scope: Optional[str]) -> Tuple[str, int]:
        params = {}
        if service:
            params["service"] = service
        if scope:
            params["scope"] = scope
        auth = self._credentials

        self.log.debug(f"Requesting token from {realm} for scope {scope or '<none>'}")
        response = self._retrying()(self.client.get, realm, params=params, auth=auth)
        if response.status_code in (401, 403):
            raise RegistryAuthError(f"Token request rejected by {realm} (HTTP {response.status_code})",
                                    response.status_code)
        self._check(response, f"token endpoint {realm}")

        try:
            data = response.json()
        except ValueError as e:
            raise RegistryAuthError(f"Invalid token response from {realm}: {e}") from e
        token = data.get("token") or data.get("access_token")
        if not token:
            raise RegistryAuthError(f"Token response from {realm} has no token")
        return token, int(data.get("expires_in") or DEFAULT_TOKEN_TTL_S)

    def _store_token(self, key: str, header: str, actions: FrozenSet[str], expiry: float) -> None:
        with self._lock:
            current = self._tokens.get(key)
            # A push token must not be replaced by a concurrently fetched pull-only token
            if current and time.time() < current.expiry and actions < current.actions:
                return
            self._tokens[key] = _CachedToken(header=header, actions=actions, expiry=expiry)

    def close(self):
        """Close HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def connect(base_url: str, username: Optional[str] = None, password: Optional[str] = None,
            **kwargs) -> RegistryHTTP:
    """
    Create a registry handle and verify it can talk to the registry.

    Keyword arguments are passed to :class:`RegistryHTTP`.

    Raises:
        RegistryAuthError: If the credentials are rejected
        RegistryError: If the registry cannot be reached
    """
    handle = RegistryHTTP(base_url, username, password, **kwargs)
    try:
        handle.connect()
    except Exception:
        handle.close()
        raise
    return handle


__all__ = ["DockerAuth", "RegistryHTTP", "connect"]
