from typing import Dict, List, Any, Iterable, Optional
import structlog
from pydantic import ValidationError

from agent_hub.domain.models.agent_state import AgentDescriptor, GenerationConfig
from agent_hub.errors import UnknownCapabilityError

logger = structlog.get_logger(__name__)


# Used when the remote catalog cannot be fetched
DEFAULT_AGENTS: List[Dict[str, Any]] = [
    {
        "id": "default",
        "name": "General Assistant",
        "description": "A kind, helpful assistant for everyday questions",
        "capabilities": ["general"],
    },
    {
        "id": "technical",
        "name": "Technical Expert",
        "description": "Programming, system design and debugging",
        "capabilities": ["technical", "programming", "system_design", "debugging"],
    },
    {
        "id": "creative",
        "name": "Creator",
        "description": "Writing, brainstorming and design proposals",
        "capabilities": ["creative", "writing", "brainstorming", "design"],
    },
    {
        "id": "analytical",
        "name": "Analyst",
        "description": "Data analysis, research and planning",
        "capabilities": ["analytical", "data_analysis", "research", "planning"],
    },
]


def build_descriptors(
    entries: Iterable[Dict[str, Any]],
    defaults: Optional[GenerationConfig] = None
) -> List[AgentDescriptor]:
    """Turn raw catalog entries into descriptors, skipping invalid ones"""

    descriptors = []
    for entry in entries:
        try:
            descriptors.append(AgentDescriptor.from_payload(entry, defaults))
        except UnknownCapabilityError as e:
            logger.warning("Skipping agent with unknown capability", agent_id=entry.get("id"), tag=e.tag)
        except ValidationError as e:
            logger.warning("Skipping invalid agent definition", agent_id=entry.get("id"), errors=e.error_count())
    return descriptors


def default_descriptors(defaults: Optional[GenerationConfig] = None) -> List[AgentDescriptor]:
    return build_descriptors(DEFAULT_AGENTS, defaults)
