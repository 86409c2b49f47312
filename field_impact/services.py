from dataclasses import dataclass
from typing import Optional

from field_impact.cache import MetadataCacheManager
from field_impact.events import EventLog, EventSink
from field_impact.gateway import GatewayFactory, TokenProvider
from field_impact.impact import ImpactAnalyzer


@dataclass
class Services:
    metadata: MetadataCacheManager
    impact: ImpactAnalyzer

    async def close(self) -> None:
        await self.metadata.close()


def build_services(
    token_provider: TokenProvider,
    gateway_factory: GatewayFactory,
    ttl_seconds: Optional[float] = None,
    batch_size: Optional[int] = None,
    sink: Optional[EventSink] = None,
) -> Services:
    """Compose one cache manager and the analyzer reading from it."""
    events = EventLog(sink=sink)
    metadata = MetadataCacheManager(
        token_provider,
        gateway_factory,
        ttl_seconds=ttl_seconds,
        batch_size=batch_size,
        events=events,
    )
    return Services(metadata=metadata, impact=ImpactAnalyzer(metadata, events=events))
