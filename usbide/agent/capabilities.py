"""Optional agent flags and the reactive support negotiation around them.

Support for ``--sandbox`` and ``--ask-for-approval`` varies between agent
releases and there is no capability query, so support is learnt from the
agent's own argument-parser errors: a rejected flag is marked unsupported
for the rest of the session and the invocation is replayed once without it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from loguru import logger

SANDBOX_FLAG = "--sandbox"
APPROVAL_FLAG = "--ask-for-approval"

REJECTION_PHRASES = ("unexpected argument", "unknown argument", "unrecognized")
VALUE_PHRASES = ("invalid value", "possible values")


class SandboxMode(StrEnum):
    READ_ONLY = "read-only"
    WORKSPACE_WRITE = "workspace-write"
    DANGER_FULL_ACCESS = "danger-full-access"

    @classmethod
    def parse(cls, value: object, default: "SandboxMode | None" = None) -> "SandboxMode":
        raw = str(value or "").strip().lower().replace("_", "-")
        aliases = {
            "read-only": cls.READ_ONLY,
            "readonly": cls.READ_ONLY,
            "ro": cls.READ_ONLY,
            "workspace-write": cls.WORKSPACE_WRITE,
            "workspace": cls.WORKSPACE_WRITE,
            "write": cls.WORKSPACE_WRITE,
            "agent": cls.WORKSPACE_WRITE,
            "danger-full-access": cls.DANGER_FULL_ACCESS,
            "danger": cls.DANGER_FULL_ACCESS,
            "full": cls.DANGER_FULL_ACCESS,
            "full-access": cls.DANGER_FULL_ACCESS,
        }
        return aliases.get(raw, default or cls.WORKSPACE_WRITE)

    @property
    def label(self) -> str:
        return {
            SandboxMode.READ_ONLY: "Read only",
            SandboxMode.WORKSPACE_WRITE: "Workspace write",
            SandboxMode.DANGER_FULL_ACCESS: "Full access",
        }[self]

    def next(self) -> "SandboxMode":
        order = list(SandboxMode)
        return order[(order.index(self) + 1) % len(order)]


class ApprovalPolicy(StrEnum):
    UNTRUSTED = "untrusted"
    ON_FAILURE = "on-failure"
    ON_REQUEST = "on-request"
    NEVER = "never"

    @classmethod
    def parse(cls, value: object, default: "ApprovalPolicy | None" = None) -> "ApprovalPolicy":
        raw = str(value or "").strip().lower().replace("_", "-")
        aliases = {
            "untrusted": cls.UNTRUSTED,
            "on-failure": cls.ON_FAILURE,
            "onfailure": cls.ON_FAILURE,
            "on-request": cls.ON_REQUEST,
            "onrequest": cls.ON_REQUEST,
            "never": cls.NEVER,
            "none": cls.NEVER,
            "off": cls.NEVER,
        }
        return aliases.get(raw, default or cls.NEVER)

    @property
    def label(self) -> str:
        return {
            ApprovalPolicy.UNTRUSTED: "Untrusted commands",
            ApprovalPolicy.ON_FAILURE: "On failure",
            ApprovalPolicy.ON_REQUEST: "On request",
            ApprovalPolicy.NEVER: "Never ask",
        }[self]

    def next(self) -> "ApprovalPolicy":
        order = [
            ApprovalPolicy.ON_REQUEST,
            ApprovalPolicy.ON_FAILURE,
            ApprovalPolicy.UNTRUSTED,
            ApprovalPolicy.NEVER,
        ]
        return order[(order.index(self) + 1) % len(order)]


class FlagSupport(StrEnum):
    UNKNOWN = "unknown"
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"


@dataclass
class CapabilityState:
    """Per-session support of the optional flags; never leaves UNSUPPORTED."""

    sandbox: FlagSupport = FlagSupport.UNKNOWN
    approval: FlagSupport = FlagSupport.UNKNOWN

    def support(self, flag: str) -> FlagSupport:
        return self.sandbox if flag == SANDBOX_FLAG else self.approval

    def _set(self, flag: str, value: FlagSupport) -> None:
        if flag == SANDBOX_FLAG:
            self.sandbox = value
        else:
            self.approval = value

    def mark_unsupported(self, flag: str) -> bool:
        """Return True when this call changed the state."""
        if self.support(flag) is FlagSupport.UNSUPPORTED:
            return False
        self._set(flag, FlagSupport.UNSUPPORTED)
        return True

    def mark_supported(self, flag: str) -> None:
        if self.support(flag) is FlagSupport.UNKNOWN:
            self._set(flag, FlagSupport.SUPPORTED)


def build_extra_args(
    state: CapabilityState,
    sandbox_mode: SandboxMode = SandboxMode.WORKSPACE_WRITE,
    approval_policy: ApprovalPolicy = ApprovalPolicy.NEVER,
) -> list[str]:
    """Flags for the next exec call: sandbox pair first, approval pair second."""
    args: list[str] = []
    if state.sandbox is not FlagSupport.UNSUPPORTED:
        args.extend([SANDBOX_FLAG, sandbox_mode.value])
    if state.approval is not FlagSupport.UNSUPPORTED:
        args.extend([APPROVAL_FLAG, approval_policy.value])
    return args


def _mentions_rejection(lower: str, flag: str) -> bool:
    if flag not in lower:
        return False
    return any(phrase in lower for phrase in REJECTION_PHRASES + VALUE_PHRASES)


def inspect_error_line(line: str, used_flags: frozenset[str] | set[str]) -> str | None:
    """Return the flag the agent rejected on this line, if it was passed."""
    lower = line.strip().lower()
    if not lower:
        return None
    for flag in (SANDBOX_FLAG, APPROVAL_FLAG):
        if flag in used_flags and _mentions_rejection(lower, flag):
            return flag
    return None


@dataclass(frozen=True)
class Rejection:
    flag: str
    first_time: bool

    @property
    def notice(self) -> str:
        if self.flag == SANDBOX_FLAG:
            return (
                f"Option {SANDBOX_FLAG} is not supported by this agent version. "
                "Retrying without it (default sandbox)."
            )
        return (
            f"Option {APPROVAL_FLAG} is not supported by this agent version. "
            "Retrying without approvals."
        )


@dataclass
class CapabilityNegotiator:
    """Builds flag sets for exec calls and reacts to rejected flags."""

    state: CapabilityState = field(default_factory=CapabilityState)
    sandbox_mode: SandboxMode = SandboxMode.WORKSPACE_WRITE
    approval_policy: ApprovalPolicy = ApprovalPolicy.NEVER
    used_flags: frozenset[str] = frozenset()
    retry_pending: bool = False

    def prepare(self) -> list[str]:
        """Flag arguments for a new exec call; remembers which flags were sent."""
        args = build_extra_args(self.state, self.sandbox_mode, self.approval_policy)
        self.used_flags = frozenset(arg for arg in args if arg in (SANDBOX_FLAG, APPROVAL_FLAG))
        self.retry_pending = False
        return args

    def observe_line(self, line: str) -> Rejection | None:
        flag = inspect_error_line(line, self.used_flags)
        if flag is None:
            return None
        first_time = self.state.mark_unsupported(flag)
        if first_time:
            logger.info(f"[capabilities] {flag} rejected by agent, disabled for this session")
        self.retry_pending = True
        return Rejection(flag=flag, first_time=first_time)

    def take_retry(self) -> bool:
        """Consume the retry mark set by ``observe_line``."""
        pending = self.retry_pending
        self.retry_pending = False
        return pending

    def settle(self, returncode: int | None) -> None:
        """A clean exit without rejections confirms the flags that were sent."""
        if returncode != 0 or self.retry_pending:
            return
        for flag in self.used_flags:
            self.state.mark_supported(flag)
