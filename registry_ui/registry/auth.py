"""
Registry auth: scheme discovery and scope-bound bearer tokens.

The registry root (/v2/) is probed anonymously once. A 200 means the
registry is open, a 401 carries a WWW-Authenticate challenge telling whether
requests need HTTP basic credentials or bearer tokens from a token service.
Tokens are cached per scope and re-validated with a probe on reuse instead of
tracking their expiry.
"""

import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests
from pydantic import ValidationError
from requests.exceptions import RequestException

from registry_ui.logging_config import configure_module_logging
from registry_ui.registry.exceptions import RegistryAuthError, RegistryConnectionError
from registry_ui.registry.models import RegistryConfig, TokenResponse

logger = configure_module_logging("registry.auth")

SCHEME_NONE = "none"
SCHEME_BASIC = "basic"
SCHEME_BEARER = "bearer"

CATALOG_SCOPE = "registry:catalog:*"

_PARAM_RE = re.compile(r'(\w+)\s*=\s*(?:"([^"]*)"|([^\s,]+))')


def repository_scope(repository: str) -> str:
    return f"repository:{repository}:*"


@dataclass
class AuthChallenge:
    """Parsed WWW-Authenticate header."""

    scheme: str
    realm: str = ""
    service: str = ""


def parse_challenge(header: Optional[str]) -> Optional[AuthChallenge]:
    """Parse a WWW-Authenticate header value.

    Returns None when the header names no scheme we can use.
    """
    if not header:
        return None
    scheme, _, params = header.strip().partition(" ")
    scheme = scheme.lower()

    if scheme == SCHEME_BASIC:
        return AuthChallenge(scheme=SCHEME_BASIC)

    if scheme == SCHEME_BEARER:
        values = {}
        for key, quoted, bare in _PARAM_RE.findall(params):
            values[key.lower()] = quoted if quoted else bare
        realm = values.get("realm", "")
        if not realm:
            return None
        return AuthChallenge(
            scheme=SCHEME_BEARER, realm=realm, service=values.get("service", "")
        )

    return None


class TokenManager:
    """Discovers the auth scheme and hands out credentials per scope."""

    def __init__(self, session: requests.Session, config: RegistryConfig):
        self._session = session
        self.config = config
        self.url = str(config.url)
        self.challenge = AuthChallenge(scheme=SCHEME_NONE)
        self._tokens: Dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def scheme(self) -> str:
        return self.challenge.scheme

    @property
    def _credentials(self) -> Optional[Tuple[str, str]]:
        if not self.config.username:
            return None
        return (self.config.username, self.config.password)

    def discover_auth_scheme(self) -> AuthChallenge:
        """
        Probe the registry root anonymously and remember its auth scheme.

        Raises:
            RegistryConnectionError: If the registry is unreachable
            RegistryAuthError: If the answer names no usable auth scheme
        """
        try:
            response = self._session.get(
                f"{self.url}/v2/", timeout=self.config.timeout
            )
        except RequestException as e:
            logger.error(f"Registry probe failed: {e}")
            raise RegistryConnectionError(f"Cannot reach registry {self.url}: {e}")

        if response.status_code == 200:
            logger.info("Registry does not require authentication")
            self.challenge = AuthChallenge(scheme=SCHEME_NONE)
            return self.challenge

        if response.status_code != 401:
            raise RegistryAuthError(
                f"Unexpected status {response.status_code} from {self.url}/v2/"
            )

        header = response.headers.get("WWW-Authenticate")
        challenge = parse_challenge(header)
        if challenge is None:
            raise RegistryAuthError(f"Unsupported auth challenge: {header!r}")

        logger.info(f"Registry auth scheme: {challenge.scheme}")
        if challenge.scheme == SCHEME_BEARER:
            logger.debug(
                f"Token endpoint: {challenge.realm} (service={challenge.service})"
            )
        self.challenge = challenge
        return challenge

    def get_token(self, scope: str) -> str:
        """
        Return a bearer token for the scope, reusing the cached one if it still works.

        Args:
            scope: Registry scope, e.g. "repository:team/app:*"

        Returns:
            Token value, or "" when none could be obtained
        """
        with self._lock:
            cached = self._tokens.get(scope)

        if cached and self._probe(cached):
            return cached

        token = self._request_token(scope)
        if token:
            with self._lock:
                self._tokens[scope] = token
        return token

    def _probe(self, token: str) -> bool:
        try:
            response = self._session.get(
                f"{self.url}/v2/",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.config.timeout,
            )
            return response.status_code == 200
        except RequestException as e:
            logger.debug(f"Token probe failed: {e}")
            return False

    def _request_token(self, scope: str) -> str:
        params = {"scope": scope}
        if self.challenge.service:
            params["service"] = self.challenge.service

        try:
            response = self._session.get(
                self.challenge.realm,
                params=params,
                auth=self._credentials,
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            token = TokenResponse.model_validate(response.json()).value
        except RequestException as e:
            logger.error(f"Failed to obtain token for scope {scope}: {e}")
            return ""
        except (ValueError, ValidationError) as e:
            logger.error(f"Invalid token response for scope {scope}: {e}")
            return ""

        if not token:
            logger.error(f"Token endpoint returned no token for scope {scope}")
        else:
            logger.debug(f"New token issued for scope {scope}")
        return token

    def request_kwargs(self, scope: str) -> Dict[str, Any]:
        """Keyword arguments authorizing a requests call for the scope."""
        if self.scheme == SCHEME_BASIC:
            return {"auth": self._credentials}
        if self.scheme == SCHEME_BEARER:
            token = self.get_token(scope)
            if token:
                return {"headers": {"Authorization": f"Bearer {token}"}}
        return {}

    def cached_scopes(self) -> list:
        with self._lock:
            return sorted(self._tokens)
