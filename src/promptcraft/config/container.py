"""
Dependency injection container for the application's long-lived services.
"""

from contextlib import asynccontextmanager
from typing import Any

from ..observability.logging import get_logger
from .settings import Settings, get_settings

logger = get_logger(__name__)


class Container:
    """Dependency injection container with async lifecycle management."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory called with the container on first ``get``."""
        self._factories[name] = factory

    def register_singleton(self, name: str, instance: Any) -> None:
        self._singletons[name] = instance
        self._services.pop(name, None)

    def get(self, name: str, default: Any = None) -> Any:
        if name in self._singletons:
            return self._singletons[name]

        if name in self._services:
            return self._services[name]

        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    async def cleanup(self) -> None:
        """Close every created service that holds async resources."""
        for name, service in list(self._services.items()):
            close = getattr(service, "cleanup", None) or getattr(service, "aclose", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                # Keep closing the rest
                logger.error(f"Error cleaning up {name}: {e}")

        self._services.clear()

    @asynccontextmanager
    async def lifespan(self):
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Container with the default service factories."""
    container = Container(settings)

    def _http_client_factory(c: Container):
        import httpx

        return httpx.AsyncClient(
            timeout=httpx.Timeout(c.settings.inference.timeout),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=4),
        )

    def _stage_clients_factory(c: Container):
        from ..agents.factory import StageClientFactory

        return StageClientFactory(c.settings, http_client=c.get("http_client"))

    def _state_store_factory(c: Container):
        from ..core.store import StateStore

        return StateStore()

    def _audit_log_factory(c: Container):
        from ..core.audit import GenerationAuditLog

        return GenerationAuditLog(c.settings.observability.log_dir)

    def _orchestrator_factory(c: Container):
        from ..core.orchestrator import PipelineOrchestrator

        return PipelineOrchestrator(
            clients=c.get("stage_clients").all_clients(),
            store=c.get("state_store"),
            audit=c.get("audit_log"),
            settings=c.settings,
        )

    container.register_factory("http_client", _http_client_factory)
    container.register_factory("stage_clients", _stage_clients_factory)
    container.register_factory("state_store", _state_store_factory)
    container.register_factory("audit_log", _audit_log_factory)
    container.register_factory("orchestrator", _orchestrator_factory)

    return container
