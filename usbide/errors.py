"""Exception types raised by usbide builders and actions."""

from __future__ import annotations


class UsbideError(Exception):
    """Base class for every usbide error."""


# ---------------------------------------------------------------------------
# Usage errors: rejected before anything is spawned
# ---------------------------------------------------------------------------


class EmptyCommandError(UsbideError, ValueError):
    def __init__(self, message: str = "command vector is empty") -> None:
        super().__init__(message)


class EmptyPromptError(UsbideError, ValueError):
    def __init__(self, message: str = "prompt is empty") -> None:
        super().__init__(message)


class EmptyPackageError(UsbideError, ValueError):
    def __init__(self, message: str = "package name is empty") -> None:
        super().__init__(message)


class EmptyPackagesError(UsbideError, ValueError):
    def __init__(self, message: str = "package list is empty") -> None:
        super().__init__(message)


class EmptyToolError(UsbideError, ValueError):
    def __init__(self, message: str = "tool name is empty") -> None:
        super().__init__(message)


class EmptyScriptError(UsbideError, ValueError):
    def __init__(self, message: str = "script path is empty") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Resolution errors: a bundled component is missing
# ---------------------------------------------------------------------------


class ResolutionError(UsbideError, RuntimeError):
    """A required runtime component could not be located."""

    def __init__(self, message: str, *, remediation: str = "") -> None:
        super().__init__(message)
        self.remediation = remediation

    def __str__(self) -> str:
        base = super().__str__()
        if self.remediation:
            return f"{base} {self.remediation}"
        return base


class NodeMissingError(ResolutionError):
    def __init__(self, expected: str = "tools/node") -> None:
        super().__init__(
            "Portable node runtime not found.",
            remediation=f"Place node in {expected} (e.g. node.exe) or add node to PATH.",
        )
        self.expected = expected


class NpmMissingError(ResolutionError):
    def __init__(self, expected: str = "tools/node/node_modules/npm") -> None:
        super().__init__(
            "npm-cli.js not found.",
            remediation=f"Check that the portable node ships npm ({expected}).",
        )
        self.expected = expected
