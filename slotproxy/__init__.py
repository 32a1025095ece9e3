"""Slot proxy: a small scheduling API in front of Cal.com."""

__version__ = "0.1.0"
