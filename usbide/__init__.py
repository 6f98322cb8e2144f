"""usbide - portable IDE shell driving shell, Python and coding-agent subprocesses."""

__version__ = "0.3.0"
