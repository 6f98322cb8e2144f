"""Python tooling (pip prefix installs, PyInstaller builds)."""
