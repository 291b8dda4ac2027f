"""
Store error types

Lookups that find nothing return None; everything below is a failure of the
store itself or of a request made against it.
"""

from typing import Optional


class StoreError(Exception):
    """The document store could not complete an operation."""


class DocumentNotFoundError(StoreError):
    """A field-level update targeted a document that does not exist."""

    def __init__(self, key: str):
        super().__init__(f"No document at {key}")
        self.key = key


class InvalidQueryError(StoreError):
    """A query used an unknown field or an unrepresentable bound."""


class ReplicationError(StoreError):
    """
    The primary write went through but the nested mirror write did not.

    Nothing is rolled back: after this error the primary copy holds the new
    values and the mirror still holds the old ones until repaired.
    """

    def __init__(self, primary: str, mirror: str, cause: Optional[BaseException] = None):
        super().__init__(f"Saved {primary} but could not mirror it to {mirror}: {cause}")
        self.primary = primary
        self.mirror = mirror
