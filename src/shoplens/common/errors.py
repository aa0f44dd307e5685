# src/shoplens/common/errors.py
from __future__ import annotations


class ShoplensError(Exception):
    """Base class for every error raised by the engine."""


class NotFoundError(ShoplensError, LookupError):
    """Unknown product or customer id in a lookup."""


class InvalidParameterError(ShoplensError, ValueError):
    """Bad caller-supplied parameter (k, top_n, config values)."""


class DataUnavailableError(ShoplensError, RuntimeError):
    """The record store could not be reached or failed mid-read."""


class DegenerateInputError(ShoplensError, ValueError):
    """Empty input where the operation needs at least one element."""


class DataValidationError(InvalidParameterError):
    pass
