from __future__ import annotations


class RiceMillError(Exception):
    """Base class for errors raised by mill operations."""


class ValidationError(RiceMillError):
    pass


class NotFoundError(RiceMillError):
    pass
