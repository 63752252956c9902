from enum import Enum
from typing import Iterable, List, Optional

from agent_hub.errors import UnknownCapabilityError


class Capability(str, Enum):
    """Capability tags an agent can advertise"""
    GENERAL = "general"
    TECHNICAL = "technical"
    PROGRAMMING = "programming"
    DEBUGGING = "debugging"
    SYSTEM_DESIGN = "system_design"
    CREATIVE = "creative"
    WRITING = "writing"
    BRAINSTORMING = "brainstorming"
    DESIGN = "design"
    ANALYTICAL = "analytical"
    DATA_ANALYSIS = "data_analysis"
    RESEARCH = "research"
    PLANNING = "planning"


BASE_PROMPT = "You are a kind and helpful AI assistant. Answer the user's questions carefully."

_PROMPT_FRAGMENTS = {
    Capability.GENERAL: "You can help with a broad range of everyday questions.",
    Capability.TECHNICAL: "You are an expert in technical questions.",
    Capability.PROGRAMMING: "You write clear, correct code and explain it.",
    Capability.DEBUGGING: "You are good at tracking down and fixing bugs.",
    Capability.SYSTEM_DESIGN: "You reason about system architecture and trade-offs.",
    Capability.CREATIVE: "You are a creator who offers original and imaginative ideas.",
    Capability.WRITING: "You are skilled at drafting and polishing prose.",
    Capability.BRAINSTORMING: "You generate many distinct ideas before converging.",
    Capability.DESIGN: "You propose thoughtful design directions.",
    Capability.ANALYTICAL: "You think logically and analytically.",
    Capability.DATA_ANALYSIS: "You are good at analysing data and explaining what it shows.",
    Capability.RESEARCH: "You investigate questions methodically and cite your reasoning.",
    Capability.PLANNING: "You break goals into concrete, ordered plans.",
}


def parse_capability(tag: str, agent_id: Optional[str] = None) -> Capability:
    """Convert a raw tag into a Capability, rejecting unknown values"""
    if isinstance(tag, Capability):
        return tag
    try:
        return Capability(str(tag).strip().lower())
    except ValueError:
        raise UnknownCapabilityError(str(tag), agent_id) from None


def parse_capabilities(tags: Iterable[str], agent_id: Optional[str] = None) -> List[Capability]:
    """Parse tags preserving first-seen order and dropping duplicates"""
    parsed: List[Capability] = []
    for tag in tags:
        capability = parse_capability(tag, agent_id)
        if capability not in parsed:
            parsed.append(capability)
    return parsed


def prompt_for_capabilities(capabilities: Iterable[Capability]) -> str:
    """Build a system prompt from capability fragments"""
    fragments = [_PROMPT_FRAGMENTS[c] for c in capabilities]
    if not fragments:
        return BASE_PROMPT
    return " ".join([BASE_PROMPT, *fragments])
