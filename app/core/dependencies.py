"""FastAPI dependencies."""
from starlette.requests import HTTPConnection

from app.core.config import settings
from app.services.agent.orchestrator import ConversationOrchestrator
from app.services.gateway.relay import RelayGateway
from app.services.session.registry import SessionRegistry


def build_gateway() -> RelayGateway:
    """Build the relay gateway with its registry and orchestrator from settings."""
    registry = SessionRegistry(
        idle_timeout_seconds=settings.session_idle_timeout_seconds,
        sweep_interval_seconds=settings.session_sweep_interval_seconds,
    )
    orchestrator = ConversationOrchestrator(registry)
    return RelayGateway(registry, orchestrator)


def get_gateway(connection: HTTPConnection) -> RelayGateway:
    """Get the application's relay gateway."""
    return connection.app.state.gateway
