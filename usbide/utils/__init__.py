"""Utility functions for usbide."""

from usbide.utils.helpers import ensure_dir
from usbide.utils.wrap import hard_wrap, wrap_text

__all__ = ["ensure_dir", "hard_wrap", "wrap_text"]
