"""Service orchestration: health probing, dependency ordering and lifecycle."""

from services.orchestrator import Orchestrator
from services.service_graph import ServiceGraph

__all__ = ["Orchestrator", "ServiceGraph"]
