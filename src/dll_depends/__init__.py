"""Recursive DLL dependency resolution for Windows binaries."""

__version__ = "1.0.0"
