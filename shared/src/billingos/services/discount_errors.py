"""Errors surfaced by discount operations."""

from __future__ import annotations


class DiscountError(Exception):
    """Base class for failures reported to callers."""


class DiscountValidationError(DiscountError, ValueError):
    """Intent rejected before any side effect."""


class DuplicateDiscountCodeError(DiscountValidationError):
    def __init__(self, code: str) -> None:
        super().__init__(f'A discount with code "{code}" already exists')
        self.code = code


class DiscountAccessError(DiscountError):
    """Caller is not a member of the discount's organization."""


class DiscountNotFoundError(DiscountError):
    pass


class DiscountPersistenceError(DiscountError):
    """The local store failed; remote side effects may already exist."""
