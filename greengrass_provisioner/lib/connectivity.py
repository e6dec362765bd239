from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import requests

logger = logging.getLogger(__name__)


@dataclass
class ConnectivityResult:
    is_connected: bool = False
    dns_ok: bool = False
    https_ok: bool = False
    latency_ms: Optional[float] = None
    tested_endpoints: List[str] = field(default_factory=list)
    error: Optional[str] = None


class ConnectivityProbe:
    """Checks that the device can reach the cloud endpoints it needs.

    Owns its HTTP session; use as a context manager (or call ``close()``) so
    the pooled connections are released when provisioning ends.
    """

    def __init__(
        self,
        *,
        dns_host: str = "amazonaws.com",
        reference_url: str = "https://www.amazontrust.com",
        endpoints: Sequence[str] = (),
        override_endpoint: Optional[str] = None,
        timeout_s: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.dns_host = dns_host
        self.reference_url = reference_url
        self.endpoints = list(endpoints)
        self.override_endpoint = override_endpoint
        self.timeout_s = float(timeout_s)
        self.session = session if session is not None else requests.Session()
        if override_endpoint:
            logger.info("Using override endpoint %s instead of %d candidates", override_endpoint, len(self.endpoints))

    @classmethod
    def from_settings(cls, settings) -> "ConnectivityProbe":
        return cls(
            dns_host=settings.dns_host,
            reference_url=settings.reference_url,
            endpoints=settings.endpoints,
            override_endpoint=settings.override_endpoint,
            timeout_s=settings.timeout_seconds,
        )

    @property
    def timeouts(self) -> tuple:
        # (connect, read)
        return (self.timeout_s / 2, self.timeout_s)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "ConnectivityProbe":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def probe(self) -> ConnectivityResult:
        result = ConnectivityResult()
        logger.info("Starting connectivity check...")

        result.dns_ok = self.check_dns(self.dns_host)
        if not result.dns_ok:
            result.error = f"DNS resolution failed for {self.dns_host}"
            logger.error(result.error)
            return result

        started = time.monotonic()
        result.https_ok = self.check_endpoint(self.reference_url)
        elapsed_ms = (time.monotonic() - started) * 1000.0
        if not result.https_ok:
            result.error = f"HTTPS connectivity check failed for {self.reference_url}"
            logger.error(result.error)
            return result
        result.latency_ms = round(elapsed_ms, 1)
        logger.debug("Latency to %s: %.1fms", self.reference_url, elapsed_ms)

        if self.override_endpoint:
            result.tested_endpoints.append(self.override_endpoint)
            if not self.check_endpoint(self.override_endpoint):
                result.error = f"Failed to connect to override endpoint {self.override_endpoint}"
                logger.error(result.error)
                return result
        else:
            reached = False
            for endpoint in self.endpoints:
                result.tested_endpoints.append(endpoint)
                if self.check_endpoint(endpoint):
                    logger.debug("Successfully connected to %s", endpoint)
                    reached = True
                    break
            if not reached:
                result.error = "Failed to connect to any endpoint"
                logger.error("%s (tried %s)", result.error, ", ".join(result.tested_endpoints))
                return result

        result.is_connected = True
        logger.info("Connectivity check passed. Latency: %sms", result.latency_ms)
        return result

    def check_dns(self, hostname: str) -> bool:
        try:
            infos = socket.getaddrinfo(hostname, 443, proto=socket.IPPROTO_TCP)
        except (socket.gaierror, UnicodeError) as e:
            logger.debug("Failed to resolve %s: %s", hostname, e)
            return False
        if not infos:
            return False
        logger.debug("Resolved %s to %s", hostname, infos[0][4][0])
        return True

    def check_endpoint(self, url: str) -> bool:
        """HEAD the URL with TLS verification; 2xx and 3xx count as reachable."""

        try:
            resp = self.session.head(url, timeout=self.timeouts, allow_redirects=True, verify=True)
        except requests.exceptions.RequestException as e:
            logger.debug("Request to %s failed: %s", url, e)
            return False

        if 200 <= resp.status_code < 400:
            logger.debug("Successfully connected to %s (HTTP %s)", url, resp.status_code)
            return True
        logger.debug("HTTP request to %s returned status %s", url, resp.status_code)
        return False
