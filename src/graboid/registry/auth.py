"""
Registry token authentication.

Implements the Docker Registry v2 challenge/response handshake as an explicit
state machine:

    NO_CHALLENGE        registry answered /v2/ without asking for credentials
    CHALLENGE_RECEIVED  registry answered 401 with a WWW-Authenticate challenge
    TOKEN_ACQUIRED      the realm issued a token for our scope

Tokens live only as long as the TokenManager (one pull); nothing is persisted.
"""
from __future__ import annotations

import base64
import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple

import httpx

from ..errors import AuthError
from ..settings import Settings
from .responses import raise_for_status, transport_errors

__all__ = [
    "AuthState",
    "Challenge",
    "AuthToken",
    "DockerAuth",
    "TokenManager",
    "parse_challenge",
]

logger = logging.getLogger(__name__)

# Token lifetime when the token server does not send expires_in
DEFAULT_TOKEN_TTL_S = 60
# Tokens are treated as expired this early, capped at half their lifetime
EXPIRY_MARGIN_S = 5

DOCKER_HUB_HOSTS = {"index.docker.io", "registry-1.docker.io", "docker.io"}
DOCKER_HUB_CONFIG_KEY = "https://index.docker.io/v1/"


class AuthState(str, Enum):
    NO_CHALLENGE = "no_challenge"
    CHALLENGE_RECEIVED = "challenge_received"
    TOKEN_ACQUIRED = "token_acquired"


@dataclass(frozen=True)
class Challenge:
    """Parsed WWW-Authenticate header."""
    scheme: str
    realm: Optional[str] = None
    service: Optional[str] = None
    scope: Optional[str] = None


@dataclass(frozen=True)
class AuthToken:
    """Credential presented on registry requests."""
    value: str
    scheme: str = "Bearer"
    realm: Optional[str] = None
    service: Optional[str] = None
    scope: Optional[str] = None
    expires_at: Optional[float] = None
    issued_at: Optional[float] = None

    @property
    def header(self) -> str:
        return f"{self.scheme} {self.value}"

    def expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        margin = EXPIRY_MARGIN_S
        if self.issued_at is not None:
            margin = min(margin, (self.expires_at - self.issued_at) / 2)
        return now >= self.expires_at - margin


def parse_challenge(www_authenticate: str) -> Challenge:
    """
    Parse a WWW-Authenticate header.

    Format: Bearer realm="...",service="...",scope="..."

    Raises:
        AuthError: (kind="challenge") for unknown schemes or a Bearer challenge
            without a realm
    """
    header = www_authenticate.strip()
    scheme, _, params_str = header.partition(" ")
    scheme = scheme.capitalize()

    if scheme not in ("Bearer", "Basic"):
        raise AuthError(f"Unsupported authentication challenge: {header!r}", header,
                        kind=AuthError.CHALLENGE)

    params: Dict[str, str] = {}
    for match in re.finditer(r'(\w+)="([^"]*)"', params_str):
        params[match.group(1).lower()] = match.group(2)

    challenge = Challenge(
        scheme=scheme,
        realm=params.get("realm"),
        service=params.get("service"),
        scope=params.get("scope"),
    )
    if scheme == "Bearer" and not challenge.realm:
        raise AuthError(f"Bearer challenge without realm: {header!r}", header,
                        kind=AuthError.CHALLENGE)
    return challenge


class DockerAuth:
    """Look up registry credentials in the Docker CLI config file."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or Path.home() / ".docker" / "config.json"

    def get_credentials(self, registry: str) -> Optional[Tuple[str, str]]:
        """
        Get credentials for registry from Docker config.

        Returns: (username, password) or None if not found
        """
        config = self._load_config()
        if not config:
            return None

        auths = config.get("auths", {})
        candidates = [registry, f"https://{registry}", f"http://{registry}"]
        if registry in DOCKER_HUB_HOSTS:
            candidates.insert(0, DOCKER_HUB_CONFIG_KEY)

        entry = next((auths[key] for key in candidates if key in auths), None)
        if not entry:
            return None

        # Handle base64 encoded auth field
        if entry.get("auth"):
            try:
                decoded = base64.b64decode(entry["auth"]).decode()
            except (ValueError, UnicodeDecodeError):
                logger.debug(f"Ignoring undecodable auth entry for {registry}")
            else:
                if ":" in decoded:
                    username, password = decoded.split(":", 1)
                    return (username, password)

        if entry.get("username") and entry.get("password"):
            return (entry["username"], entry["password"])

        return None

    def _load_config(self) -> Optional[dict]:
        if not self.config_path.exists():
            return None
        try:
            with open(self.config_path, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.debug(f"Failed to read Docker config {self.config_path}: {e}")
            return None


class TokenManager:
    """
    Negotiates and holds the credential for one repository scope.

    Args:
        client: HTTP client shared with the rest of the pull
        settings: Endpoint configuration (base URL, credentials)
        scope: Token scope, e.g. "repository:library/redis:pull"
        docker_auth: Fallback credential lookup when settings carry none
    """

    def __init__(self, client: httpx.Client, settings: Settings, scope: str,
                 docker_auth: Optional[DockerAuth] = None):
        self.client = client
        self.settings = settings
        self.scope = scope
        self.docker_auth = docker_auth or DockerAuth()
        self.state = AuthState.NO_CHALLENGE
        self.token: Optional[AuthToken] = None
        self._credentials: Optional[Tuple[str, str]] = None
        self._credentials_loaded = False
        # Held while the token changes; blob fetch threads share this manager
        self._lock = threading.RLock()

    @property
    def credentials(self) -> Optional[Tuple[str, str]]:
        if not self._credentials_loaded:
            self._credentials = self.settings.credentials or \
                self.docker_auth.get_credentials(self.settings.registry_host)
            self._credentials_loaded = True
        return self._credentials

    def authenticate(self) -> Optional[AuthToken]:
        """
        Probe /v2/ and complete the handshake if the registry asks for one.

        Returns:
            The acquired token, or None when the registry needs no authentication

        Raises:
            AuthError: Malformed challenge or rejected credentials
            NetworkError: Transport failure
        """
        url = f"{self.settings.registry_base_url}/v2/"
        logger.debug(f"Probing {url}")

        with transport_errors(url):
            response = self.client.get(url)

        if response.status_code == 401:
            header = response.headers.get("WWW-Authenticate", "")
            if not header:
                raise AuthError(f"401 from {url} without WWW-Authenticate header", url,
                                kind=AuthError.CHALLENGE)
            return self._answer(parse_challenge(header))

        raise_for_status(response, url)
        self.state = AuthState.NO_CHALLENGE
        self.token = None
        logger.debug(f"No authentication required by {url}")
        return None

    def handle_challenge(self, www_authenticate: str,
                         rejected: Optional[AuthToken] = None) -> Optional[AuthToken]:
        """
        React to a 401 received on a later request.

        Args:
            www_authenticate: Challenge header of the 401 response
            rejected: Token the refused request carried, if known

        Returns:
            A new token to retry with, or None when the challenge asks for the
            same scope our unexpired token already covers (the request was
            simply refused)
        """
        challenge = parse_challenge(www_authenticate)
        with self._lock:
            current = self.token
            if current is not None and not current.expired():
                if rejected is not None and current is not rejected:
                    # Replaced by another fetch thread since the request went out
                    return current
                if challenge.scheme == "Basic" and current.scheme == "Basic":
                    return None
                if challenge.scheme == "Bearer" and current.scheme == "Bearer" and \
                        (challenge.scope or self.scope) == current.scope:
                    return None
            return self._answer(challenge)

    def authorization_headers(self) -> Dict[str, str]:
        """Authorization header for the current token (refreshing if expired)."""
        token = self.current_token()
        if token is None:
            return {}
        return {"Authorization": token.header}

    def current_token(self) -> Optional[AuthToken]:
        """The token to send next, refreshed first if it has expired."""
        token = self.token
        if token is not None and token.expired() and token.realm:
            with self._lock:
                # Another fetch thread may have refreshed it while we waited
                if self.token is token:
                    logger.debug("Token expired, refreshing")
                    self._answer(Challenge(scheme="Bearer", realm=token.realm,
                                           service=token.service, scope=token.scope))
            token = self.token
        return token

    def _answer(self, challenge: Challenge) -> AuthToken:
        with self._lock:
            self.state = AuthState.CHALLENGE_RECEIVED
            if challenge.scheme == "Basic":
                token = self._basic_token()
            else:
                token = self._fetch_bearer_token(challenge)
            self.token = token
            self.state = AuthState.TOKEN_ACQUIRED
            return token

    def _basic_token(self) -> AuthToken:
        creds = self.credentials
        if not creds:
            raise AuthError("Registry requires basic authentication but no credentials are configured",
                            self.settings.registry_base_url, kind=AuthError.UNAUTHORIZED)
        encoded = base64.b64encode(f"{creds[0]}:{creds[1]}".encode()).decode()
        logger.debug("Using basic authentication")
        return AuthToken(value=encoded, scheme="Basic")

    def _fetch_bearer_token(self, challenge: Challenge) -> AuthToken:
        """Exchange (optional) credentials for a bearer token at the challenge realm."""
        realm = challenge.realm or ""
        scope = challenge.scope or self.scope
        params = {"scope": scope}
        if challenge.service:
            params["service"] = challenge.service

        creds = self.credentials
        logger.debug(f"Requesting token from {realm} for {scope} "
                     f"({'authenticated' if creds else 'anonymous'})")

        with transport_errors(realm):
            response = self.client.get(realm, params=params, auth=creds if creds else None)

        if response.status_code in (401, 403):
            raise AuthError(f"Token request rejected by {realm} ({response.status_code})", realm,
                            kind=AuthError.UNAUTHORIZED)
        raise_for_status(response, realm)

        try:
            token_data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise AuthError(f"Token response from {realm} is not JSON: {e}", realm,
                            kind=AuthError.CHALLENGE) from e

        if not isinstance(token_data, dict):
            token_data = {}
        value = token_data.get("token") or token_data.get("access_token")
        if not value:
            raise AuthError(f"Token response from {realm} has no token", realm,
                            kind=AuthError.CHALLENGE)

        expires_in = token_data.get("expires_in") or DEFAULT_TOKEN_TTL_S
        issued_at = time.time()
        return AuthToken(
            value=value,
            scheme="Bearer",
            realm=realm,
            service=challenge.service,
            scope=scope,
            expires_at=issued_at + float(expires_in),
            issued_at=issued_at,
        )
