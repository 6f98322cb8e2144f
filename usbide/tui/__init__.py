"""Textual front end for usbide."""
