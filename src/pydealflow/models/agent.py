"""Agent metadata and registry records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pydealflow.core.node import BaseNode

DEFAULT_AGENT_VERSION = "1.0.0"
DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_MS = 30000


@dataclass
class AgentMetadata:
    """Descriptive metadata for a registered agent.

    `dependencies` names other agents that logically must be registered
    too; they are checked by AgentRegistry.validate_dependencies(), never
    enforced at registration time.
    """

    name: str
    description: str = ""
    version: str = DEFAULT_AGENT_VERSION
    dependencies: list[str] = field(default_factory=list)
    capabilities: list[str] = field(default_factory=list)
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self) -> None:
        if not self.description:
            self.description = f"{self.name} agent"


@dataclass
class RegisteredAgent:
    """A (template, metadata) pair stored in the registry.

    The template is never handed out; lookups return clones of it.
    """

    metadata: AgentMetadata
    template: BaseNode
    enabled: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    last_used: datetime | None = None
    healthy: bool = True

    @property
    def name(self) -> str:
        return self.metadata.name

    def __repr__(self) -> str:
        return (
            f"RegisteredAgent(name={self.name!r}, version={self.metadata.version!r}, "
            f"enabled={self.enabled}, healthy={self.healthy})"
        )
