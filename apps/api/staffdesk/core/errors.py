from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base for business-rule failures surfaced to API callers.

    Subclasses pin a stable ``code`` and the HTTP status the API layer renders.
    """

    code = "domain_error"
    status_code = 400

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class RecordNotFound(DomainError):
    code = "record_not_found"
    status_code = 404
