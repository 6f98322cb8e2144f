"""Registry of supported coding-agent CLIs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from usbide.runtime.environment import env_lookup


@dataclass(frozen=True)
class AgentDef:
    """Coding-agent CLI metadata."""

    key: str
    name: str
    command: str
    env_override: str
    npm_package: str
    bin_key: str
    install_dir: str

    def resolve_command(self, env: Mapping[str, str] | None = None) -> str:
        """Resolve the bare command from env override or default command."""
        value = (env_lookup(env, self.env_override) or "").strip() if env is not None else ""
        return value or self.command

    @property
    def package_parts(self) -> tuple[str, ...]:
        """``@scope/name`` split into path components under node_modules."""
        return tuple(part for part in self.npm_package.split("/") if part)


AGENT_DEFS: dict[str, AgentDef] = {
    "codex": AgentDef(
        key="codex",
        name="Codex CLI",
        command="codex",
        env_override="USBIDE_CODEX_CMD",
        npm_package="@openai/codex",
        bin_key="codex",
        install_dir="codex",
    ),
}

DEFAULT_AGENT = "codex"


def get_agent_def(agent_type: str = DEFAULT_AGENT) -> AgentDef:
    """Get an agent definition by key."""
    key = (agent_type or "").strip().lower()
    if key not in AGENT_DEFS:
        choices = ", ".join(sorted(AGENT_DEFS))
        raise ValueError(f"Unknown agent type '{agent_type}'. Expected one of: {choices}")
    return AGENT_DEFS[key]
