# imgproxy/__init__.py
"""Allowlisted, redirect-bounded, streaming image proxy."""

__version__ = "1.0.0"
