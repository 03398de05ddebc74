"""Reverse-DNS resolution with a hard deadline."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional

import dns.exception
import dns.resolver
import dns.reversename
import structlog

from collector.core.models.config import CollectorConfig
from collector.core.utils.metrics import RDNS_DURATION, RDNS_LOOKUPS

logger = structlog.get_logger(__name__)


class ReverseDnsResolver:
    """Resolve IP -> hostname via PTR without ever blocking past the timeout."""

    def __init__(self, config: CollectorConfig, resolver: Optional[dns.resolver.Resolver] = None):
        self.config = config
        self._resolver = resolver
        self._executor = ThreadPoolExecutor(max_workers=config.rdns_workers, thread_name_prefix="rdns")
        self._in_flight = 0
        self._in_flight_lock = threading.Lock()

    def _get_resolver(self) -> dns.resolver.Resolver:
        if self._resolver is None:
            resolver = dns.resolver.Resolver()
            if self.config.dns_server:
                resolver.nameservers = [self.config.dns_server]
            self._resolver = resolver
        return self._resolver

    @property
    def backlog(self) -> int:
        """Lookups submitted to the pool that have not finished yet."""
        with self._in_flight_lock:
            return self._in_flight

    def _lookup_done(self, future) -> None:
        with self._in_flight_lock:
            self._in_flight -= 1

    def _lookup(self, ip: str, lifetime: float) -> str:
        rev_name = dns.reversename.from_address(ip)
        answer = self._get_resolver().resolve(rev_name, 'PTR', lifetime=lifetime)
        return str(answer[0]).rstrip('.')

    def resolve(self, ip: str, timeout_ms: Optional[int] = None) -> str:
        """Return the PTR hostname for ``ip``, or "" on timeout or any error."""
        if not ip or ip == "unknown":
            RDNS_LOOKUPS.labels(status='skipped').inc()
            return ""

        timeout = (timeout_ms if timeout_ms is not None else self.config.rdns_timeout_ms) / 1000.0
        if timeout <= 0:
            RDNS_LOOKUPS.labels(status='skipped').inc()
            return ""

        # stuck lookups keep their worker busy; never queue behind them
        with self._in_flight_lock:
            if self._in_flight >= self.config.rdns_workers:
                RDNS_LOOKUPS.labels(status='skipped').inc()
                logger.debug("Reverse DNS pool busy", ip=ip, in_flight=self._in_flight)
                return ""
            self._in_flight += 1

        start = time.perf_counter()
        future = None
        try:
            future = self._executor.submit(self._lookup, ip, timeout)
            future.add_done_callback(self._lookup_done)
            hostname = future.result(timeout=timeout)
            RDNS_LOOKUPS.labels(status='resolved').inc()
            return hostname
        except FutureTimeout:
            future.cancel()
            RDNS_LOOKUPS.labels(status='timeout').inc()
            logger.debug("Reverse DNS timed out", ip=ip, timeout_ms=timeout * 1000)
            return ""
        except (dns.exception.DNSException, ValueError) as e:
            RDNS_LOOKUPS.labels(status='not_found').inc()
            logger.debug("Reverse DNS failed", ip=ip, error=str(e))
            return ""
        except Exception as e:
            RDNS_LOOKUPS.labels(status='error').inc()
            if future is None:
                self._lookup_done(None)
            logger.warning("Reverse DNS error", ip=ip, error=str(e))
            return ""
        finally:
            RDNS_DURATION.observe(time.perf_counter() - start)

    def close(self):
        self._executor.shutdown(wait=False)
