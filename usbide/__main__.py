"""Entry point for running usbide as a module."""

from usbide.cli.commands import app

if __name__ == "__main__":
    app()
