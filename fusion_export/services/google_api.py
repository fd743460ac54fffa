"""Shared plumbing for the Google API clients.

Clients are built with ``googleapiclient`` from the export's OAuth access
token. The underlying httplib2 transport is not thread safe, so every worker
thread keeps its own client per API and token.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Optional, Tuple, Type

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..core.models import AuthContext
from .base import ServiceError

# APIs whose discovery document is not bundled with googleapiclient
DYNAMIC_DISCOVERY_APIS = {"fusiontables"}

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

ServiceFactory = Callable[[str, str, AuthContext], Any]


def build_service(api: str, version: str, auth: AuthContext) -> Any:
    """Build an API client authorized with the export's access token."""
    credentials = Credentials(token=auth.access_token)
    return build(
        api,
        version,
        credentials=credentials,
        cache_discovery=False,
        static_discovery=api not in DYNAMIC_DISCOVERY_APIS,
    )


class ServiceCache:
    """Thread-local cache of API clients keyed by API, version and token."""

    def __init__(self, factory: Optional[ServiceFactory] = None) -> None:
        self._factory = factory or build_service
        self._local = threading.local()

    def get(self, api: str, version: str, auth: AuthContext) -> Any:
        services: Optional[Dict[Tuple[str, str, str], Any]] = getattr(
            self._local, "services", None
        )
        if services is None:
            services = self._local.services = {}

        key = (api, version, auth.access_token)
        if key not in services:
            services[key] = self._factory(api, version, auth)
        return services[key]


def service_error(
    error: HttpError,
    context: str,
    error_class: Type[ServiceError] = ServiceError,
) -> ServiceError:
    """Convert an ``HttpError`` into ``error_class``.

    Rate limits and server errors are retryable; authentication, permission
    and not-found errors are not.
    """
    status_code = int(error.resp.status)
    reason = getattr(error, "reason", None) or f"HTTP {status_code}"
    return error_class(
        f"{context} failed with HTTP {status_code}: {reason}",
        status_code=status_code,
        retryable=status_code in RETRYABLE_STATUS_CODES,
    )


def execute(
    request: Any,
    context: str,
    error_class: Type[ServiceError] = ServiceError,
) -> Dict[str, Any]:
    """Execute an API request, mapping failures to ``error_class``."""
    try:
        return request.execute() or {}
    except HttpError as e:
        raise service_error(e, context, error_class) from e
    except OSError as e:
        # Connection resets, timeouts and TLS errors
        raise error_class(f"{context} failed: {e}") from e
