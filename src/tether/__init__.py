"""Tether — relay a supervised coding-assistant CLI run to a chat thread."""

__version__ = "0.1.0"
