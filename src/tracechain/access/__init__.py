"""Role registry and emergency pause switch."""

from tracechain.access.control import AccessControl

__all__ = ["AccessControl"]
