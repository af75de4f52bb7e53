"""HTTP health checks of running server instances."""

import time
from typing import Optional

import requests

from ..core.log import Logger, get_logger
from ..core.types import HealthStatus, TimeoutConfig


class ServerHealthChecker:
    """Probes a server's root URL; any non-5xx response counts as healthy."""

    def __init__(
        self,
        logger: Optional[Logger] = None,
        timeout_config: Optional[TimeoutConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._logger = logger or get_logger(__name__)
        self._timeout_config = timeout_config or TimeoutConfig()
        self._session = session or requests.Session()

    def check_health(self, url: str, timeout: Optional[float] = None) -> HealthStatus:
        """Perform a GET request and report status and latency."""
        timeout = timeout or self._timeout_config.health_check
        start_time = time.time()
        try:
            response = self._session.get(url, timeout=timeout, allow_redirects=False)
        except requests.RequestException as e:
            response_time = time.time() - start_time
            self._logger.debug("Health check of %s failed: %s", url, e)
            return HealthStatus(
                is_healthy=False,
                response_time=response_time,
                error_message=f"{type(e).__name__}: {e}",
            )

        response_time = time.time() - start_time
        healthy = response.status_code < 500
        return HealthStatus(
            is_healthy=healthy,
            response_time=response_time,
            status_code=response.status_code,
            error_message=None if healthy else f"HTTP {response.status_code}",
            details={"url": url},
        )
