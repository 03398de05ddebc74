"""
Collector service wiring.

One ``CollectorService`` is built per process (in the FastAPI lifespan) and
owns the scorer, the aggregation store and the webhook sink.
"""

from typing import Any, Dict, Optional

import structlog

from collector.core.aggregation.store import AggregationStore, IngestResult
from collector.core.errors import SinkError
from collector.core.models.events import Event
from collector.core.processors.scoring import ScoringEngine
from collector.core.sinks.delivery import DeliveryAdapter
from collector.core.sinks.webhook_sink import WebhookSink
from collector.core.utils.rdns import ReverseDnsResolver
from collector.core.utils.scheduler import Scheduler
from gateway.config import GatewayConfig

logger = structlog.get_logger(__name__)


class CollectorService:
    """Decoded event in, scored burst out."""

    def __init__(
        self,
        config: GatewayConfig,
        sink: Optional[WebhookSink] = None,
        scheduler: Optional[Scheduler] = None,
        resolver=None,
    ):
        self.config = config
        self.sink = sink or WebhookSink(config.sink.webhook_url, timeout=config.sink.request_timeout)
        self.resolver = resolver if resolver is not None else ReverseDnsResolver(config.collector)
        self.scoring = ScoringEngine(self.resolver, config.collector.rdns_timeout_ms)
        self.delivery = DeliveryAdapter(self.sink, config.collector, include_debug=config.sink.include_debug_payload)
        self.store = AggregationStore(config.collector, self.delivery, scheduler=scheduler)

    @property
    def sink_configured(self) -> bool:
        return bool(getattr(self.sink, "configured", True))

    def ingest(self, event: Event) -> IngestResult:
        """Score ``event`` (outside the store lock) and merge it into its burst."""
        score = self.scoring.score(event)
        return self.store.ingest(event, score)

    def notify(self, payload: Dict[str, Any], kind: str = "message") -> bool:
        """Send a one-off, non-aggregated message. Never raises."""
        try:
            return self.sink.send(payload, kind=kind)
        except SinkError as e:
            logger.error("Webhook notification failed", kind=kind, error=str(e))
        except Exception as e:
            logger.exception("Unexpected webhook notification error", kind=kind, error=str(e))
        return False

    def close(self) -> None:
        self.store.close(drain=self.config.api.flush_on_shutdown)
        close = getattr(self.resolver, "close", None)
        if close:
            close()
        logger.info("Collector service closed")
