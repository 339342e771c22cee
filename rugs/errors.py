"""Exceptions raised by the rugs core."""

from __future__ import annotations


class RugsError(Exception):
    """Base class for errors raised by the rugs core."""


class ValidationError(RugsError, ValueError):
    """Input was rejected before anything was written."""
