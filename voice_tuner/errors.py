"""Caller-contract errors. A missing pitch is ``None``, never one of these."""

from __future__ import annotations


class TunerError(Exception):
    """Base class for invalid configuration or malformed input."""


class InvalidConfigError(TunerError, ValueError):
    pass


class InvalidFrameError(TunerError, ValueError):
    pass
