"""HourLog error taxonomy.

Every operation either succeeds completely or raises exactly one of these.
"""

from __future__ import annotations


class HourLogError(Exception):
    """Base class for all HourLog failures."""


class InvalidDateKey(HourLogError):
    """A date string is not a canonical YYYY-MM-DD calendar date."""


class UnknownTimeZone(HourLogError):
    """A timezone name could not be resolved."""


class InvalidInput(HourLogError):
    """An argument is outside its accepted bounds (title length, hour, estimate)."""


class NotFound(HourLogError):
    """The referenced record does not exist or belongs to another user."""


class Forbidden(HourLogError):
    """The operation is disallowed by a lifecycle rule (locked, past, cross-day)."""


class Conflict(HourLogError):
    """A concurrent equivalent operation won a race. Safe to retry."""


class EnrichmentUnavailable(HourLogError):
    """The text-enrichment service failed. Never fatal to the caller."""
