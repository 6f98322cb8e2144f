"""Configuration schema for usbide."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from usbide.agent.capabilities import ApprovalPolicy, SandboxMode
from usbide.tools.python_tools import DEFAULT_DEV_TOOLS


class AgentConfig(BaseModel):
    """Coding-agent invocation settings."""

    name: str = "codex"
    sandbox: SandboxMode = SandboxMode.WORKSPACE_WRITE
    approval: ApprovalPolicy = ApprovalPolicy.NEVER
    device_auth: bool = False
    auto_install: bool = True
    npm_package: str = "@openai/codex"
    allow_api_key: bool = False
    allow_custom_base: bool = False
    compact_view: bool = True

    @field_validator("sandbox", mode="before")
    @classmethod
    def _parse_sandbox(cls, value: object) -> SandboxMode:
        return SandboxMode.parse(value)

    @field_validator("approval", mode="before")
    @classmethod
    def _parse_approval(cls, value: object) -> ApprovalPolicy:
        return ApprovalPolicy.parse(value)


class ToolsConfig(BaseModel):
    """Python tooling settings."""

    python: str = ""
    dev_tools: str = DEFAULT_DEV_TOOLS
    onefile: bool = False


class UIConfig(BaseModel):
    """Log pane and poll-loop settings."""

    log_limit: int = Field(default=2000, ge=1)
    tick_s: float = Field(default=0.05, gt=0)
    wrap_width: int = Field(default=100, ge=10)


class Config(BaseSettings):
    """Root configuration for usbide."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    ui: UIConfig = Field(default_factory=UIConfig)

    model_config = SettingsConfigDict(
        env_prefix="USBIDE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Values loaded from config.json arrive as init kwargs; env wins over them.
        return env_settings, init_settings, file_secret_settings
