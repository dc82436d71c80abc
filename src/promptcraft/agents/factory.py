"""
Builds the stage clients from settings, sharing one HTTP client.
"""

import httpx

from ..config.settings import Settings
from ..core.models import StageKind
from ..observability.logging import get_logger
from .base import StageClient
from .coder import CoderClient
from .planner import PlannerClient
from .reviewer import ReviewerClient
from .themer import ThemerClient

logger = get_logger(__name__)

STAGE_CLIENT_CLASSES: dict[StageKind, type[StageClient]] = {
    StageKind.PLANNER: PlannerClient,
    StageKind.THEMER: ThemerClient,
    StageKind.CODER: CoderClient,
    StageKind.REVIEWER: ReviewerClient,
}


class StageClientFactory:
    """Creates and caches one client per stage."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._owned_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.inference.timeout),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=4),
        )
        self._clients: dict[StageKind, StageClient] = {}

    def create_client(self, stage: StageKind) -> StageClient:
        endpoint = self.settings.stages.for_stage(stage)
        client = STAGE_CLIENT_CLASSES[stage](
            endpoint=endpoint, inference=self.settings.inference, http_client=self.http_client
        )
        logger.info(f"Created {stage.display_name} client with model {endpoint.model}")
        return client

    def get_client(self, stage: StageKind) -> StageClient:
        if stage not in self._clients:
            self._clients[stage] = self.create_client(stage)
        return self._clients[stage]

    def all_clients(self) -> dict[StageKind, StageClient]:
        return {stage: self.get_client(stage) for stage in StageKind.ordered()}

    async def cleanup(self) -> None:
        self._clients.clear()
        if self._owned_client:
            await self.http_client.aclose()
