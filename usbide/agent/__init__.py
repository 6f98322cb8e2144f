"""Coding-agent integration: resolution, capability negotiation, output normalization."""

from usbide.agent.capabilities import (
    ApprovalPolicy,
    CapabilityNegotiator,
    CapabilityState,
    FlagSupport,
    SandboxMode,
    build_extra_args,
    inspect_error_line,
)
from usbide.agent.normalizer import DisplayItem, DisplayKind, EventNormalizer, extract_display_items
from usbide.agent.registry import AgentDef, get_agent_def

__all__ = [
    "AgentDef",
    "ApprovalPolicy",
    "CapabilityNegotiator",
    "CapabilityState",
    "DisplayItem",
    "DisplayKind",
    "EventNormalizer",
    "FlagSupport",
    "SandboxMode",
    "build_extra_args",
    "extract_display_items",
    "get_agent_def",
    "inspect_error_line",
]
