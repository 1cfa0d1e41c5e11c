"""
Store Errors

Exception taxonomy shared by the page store, alias index, link graph and
frontier.
"""


class StoreError(Exception):
    """Base class for crawl store errors."""


class NotFoundError(StoreError, LookupError):
    """Lookup on a missing page id, key or alias."""


class PathNotFoundError(NotFoundError):
    """No chain of stored links connects two pages."""


class ConflictError(StoreError):
    """An alias is already mapped to a different page."""

    def __init__(self, alias: str, existing_page_id: int, requested_page_id: int):
        self.alias = alias
        self.existing_page_id = existing_page_id
        self.requested_page_id = requested_page_id
        super().__init__(
            f"alias {alias!r} already resolves to page {existing_page_id}, "
            f"refusing to remap it to {requested_page_id}"
        )


class DanglingReferenceError(StoreError):
    """An edge or alias references pages that do not exist."""

    def __init__(self, missing_ids):
        self.missing_ids = sorted(set(missing_ids))
        super().__init__(f"unknown page ids: {self.missing_ids}")


class DuplicateKeyError(StoreError):
    """A unique key already exists. Swallowed by idempotent writes."""


class IdentityConflictError(StoreError):
    """
    Two ids claim the same canonical key, or one id claims two keys.

    The page identity invariant is broken; the operation cannot continue.
    """


class FetchError(Exception):
    """A Wikipedia page or title could not be fetched or parsed."""
