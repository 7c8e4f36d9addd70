"""
Registry HTTP client for the Docker Registry v2 API.

Owns the httpx client and the TokenManager for one pull, attaches the current
credential to every request and transparently answers a mid-pull 401
challenge once (scope change or expired token).
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple
from urllib.parse import urljoin

import httpx

from .. import __version__
from ..settings import Settings
from .auth import AuthToken, DockerAuth, TokenManager
from .responses import raise_for_status, transport_errors

__all__ = ["RegistryHTTP"]

logger = logging.getLogger(__name__)


class RegistryHTTP:
    """
    HTTP client for registry API operations within a single pull.

    Args:
        settings: Endpoint configuration
        scope: Token scope for the repository being pulled
        transport: Optional httpx transport (tests inject httpx.MockTransport)
        docker_auth: Optional Docker config credential lookup
    """

    def __init__(self, settings: Settings, scope: str, *,
                 transport: Optional[httpx.BaseTransport] = None,
                 docker_auth: Optional[DockerAuth] = None):
        self.settings = settings
        self.base_url = settings.registry_base_url

        client_kwargs = {}
        if settings.proxy:
            client_kwargs["proxy"] = settings.proxy

        self.client = httpx.Client(
            timeout=httpx.Timeout(settings.http_timeout_s, connect=min(10.0, settings.http_timeout_s)),
            follow_redirects=True,
            verify=not settings.insecure,
            transport=transport,
            headers={"User-Agent": f"graboid/{__version__}"},
            **client_kwargs,
        )
        self.tokens = TokenManager(self.client, settings, scope, docker_auth)

    def authenticate(self) -> Optional[AuthToken]:
        """Run the authentication handshake (see TokenManager.authenticate)."""
        return self.tokens.authenticate()

    def get(self, path: str, *, identifier: str, headers: Optional[Dict[str, str]] = None,
            params: Optional[Dict[str, str]] = None) -> httpx.Response:
        """
        GET a registry path and return the fully read response.

        Raises:
            NotFoundError, AuthError, NetworkError, GraboidError: Per status mapping
        """
        url = self._url(path)
        with transport_errors(url):
            response = self._send("GET", url, headers=headers, params=params, stream=False)
        raise_for_status(response, identifier)
        return response

    @contextmanager
    def stream(self, path: str, *, identifier: str,
               headers: Optional[Dict[str, str]] = None) -> Iterator[httpx.Response]:
        """
        GET a registry path without reading the body.

        The response is closed when the context exits. Reading the body inside
        the context may still raise httpx.TransportError; callers wrap reads in
        transport_errors().
        """
        url = self._url(path)
        with transport_errors(url):
            response = self._send("GET", url, headers=headers, params=None, stream=True)
        try:
            raise_for_status(response, identifier)
            yield response
        finally:
            response.close()

    def _send(self, method: str, url: str, *, headers: Optional[Dict[str, str]],
              params: Optional[Dict[str, str]], stream: bool) -> httpx.Response:
        """
        Send a request with the current credential.

        On 401, hands the challenge to the TokenManager and retries once if it
        produced a new credential.
        """
        response, sent = self._send_once(method, url, headers, params, stream)
        if response.status_code != 401:
            return response

        challenge = response.headers.get("WWW-Authenticate")
        if not challenge:
            return response

        token = self.tokens.handle_challenge(challenge, rejected=sent)
        if token is None:
            return response

        logger.debug(f"Re-authenticated after 401 on {url}, retrying")
        response.close()
        response, _ = self._send_once(method, url, headers, params, stream)
        return response

    def _send_once(self, method: str, url: str, headers: Optional[Dict[str, str]],
                   params: Optional[Dict[str, str]],
                   stream: bool) -> Tuple[httpx.Response, Optional[AuthToken]]:
        request_headers = dict(headers or {})
        token = self.tokens.current_token()
        if token is not None:
            request_headers["Authorization"] = token.header
        request = self.client.build_request(method, url, headers=request_headers, params=params)
        logger.debug(f"{method} {request.url}")
        return self.client.send(request, stream=stream), token

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return urljoin(self.base_url + "/", path.lstrip("/"))

    def close(self):
        """Close HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
