"""
Delivery adapter: flushed burst -> sink payloads.

Best-effort by contract. Payloads go out in order; the first explicit
rejection triggers one minimal fallback message and ends the flush.
Transport errors are logged and never reach the caller.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import structlog

from collector.core.errors import SinkError
from collector.core.models.config import CollectorConfig
from collector.core.models.events import BurstSnapshot
from collector.core.sinks.formatter import FALLBACK_PAYLOAD, build_debug_payload, build_summary_payload
from collector.core.utils.metrics import DELIVERY_DURATION, DELIVERY_PAYLOADS

logger = structlog.get_logger(__name__)


@dataclass
class DeliveryResult:
    """What happened to the payloads of one flush."""
    key: str
    sent: int = 0
    failed: int = 0
    fallback_sent: bool = False
    fallback_accepted: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.errors


class DeliveryAdapter:
    """Format a burst snapshot and push it to the notification sink."""

    def __init__(self, sink, config: CollectorConfig, include_debug: bool = True):
        self.sink = sink
        self.config = config
        self.include_debug = include_debug

    def build_payloads(self, snapshot: BurstSnapshot) -> List[Tuple[str, Dict[str, Any]]]:
        payloads = [("summary", build_summary_payload(snapshot, self.config.display_timezone))]
        if self.include_debug:
            payloads.append(("debug", build_debug_payload(snapshot, self.config.debug_max_chars)))
        return payloads

    def deliver(self, snapshot: BurstSnapshot) -> DeliveryResult:
        result = DeliveryResult(key=snapshot.key)
        start = time.perf_counter()

        for kind, payload in self.build_payloads(snapshot):
            try:
                accepted = self.sink.send(payload, kind=kind)
            except SinkError as e:
                result.errors.append(f"{kind}: {e}")
                DELIVERY_PAYLOADS.labels(kind=kind, status='error').inc()
                logger.error("Webhook send error", key=snapshot.key, kind=kind, error=str(e))
                continue
            except Exception as e:
                result.errors.append(f"{kind}: {e}")
                DELIVERY_PAYLOADS.labels(kind=kind, status='error').inc()
                logger.exception("Unexpected webhook send error", key=snapshot.key, kind=kind, error=str(e))
                continue

            if accepted:
                result.sent += 1
                continue

            result.failed += 1
            result.fallback_sent = True
            result.fallback_accepted = self._send_fallback(snapshot.key, result)
            break

        DELIVERY_DURATION.observe(time.perf_counter() - start)
        logger.info("Burst delivered",
                   key=snapshot.key,
                   count=snapshot.count,
                   sent=result.sent,
                   failed=result.failed,
                   fallback_sent=result.fallback_sent,
                   errors=len(result.errors))
        return result

    def _send_fallback(self, key: str, result: DeliveryResult) -> bool:
        try:
            return bool(self.sink.send(dict(FALLBACK_PAYLOAD), kind="fallback"))
        except Exception as e:
            result.errors.append(f"fallback: {e}")
            DELIVERY_PAYLOADS.labels(kind='fallback', status='error').inc()
            logger.error("Fallback send failed", key=key, error=str(e))
            return False
