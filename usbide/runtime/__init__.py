"""Subprocess engine and environment plumbing."""

from usbide.runtime.commands import python_run_argv, shell_argv
from usbide.runtime.environment import base_environment, portable_env, sanitize_agent_env
from usbide.runtime.process import ProcessEvent, ProcessEventKind, ProcessHandle, spawn

__all__ = [
    "ProcessEvent",
    "ProcessEventKind",
    "ProcessHandle",
    "base_environment",
    "portable_env",
    "python_run_argv",
    "sanitize_agent_env",
    "shell_argv",
    "spawn",
]
