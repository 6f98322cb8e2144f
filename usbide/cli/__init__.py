"""Command-line interface for usbide."""
