"""
Error taxonomy for the submission backend.

Every error raised by the service layer derives from SubmissionError and
carries the HTTP status the API boundary should answer with. Messages of
client-facing errors are safe to return verbatim; PersistenceError keeps
its detail for the logs and exposes only a generic public message.
"""

from __future__ import annotations

from typing import Iterable, List


class SubmissionError(Exception):
    status_code = 500
    public_message = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(SubmissionError):
    status_code = 400


class MissingFieldsError(ValidationError):
    def __init__(self, missing: Iterable[str]) -> None:
        self.missing: List[str] = list(missing)
        super().__init__(f"Missing required fields: {', '.join(self.missing)}")


class NotFoundError(SubmissionError):
    status_code = 404

    def __init__(self, unique_id: object) -> None:
        self.unique_id = unique_id
        super().__init__(f"Submission with ID {unique_id} not found.")


class ForbiddenError(SubmissionError):
    status_code = 403


class PersistenceError(SubmissionError):
    status_code = 500


class NotificationError(SubmissionError):
    pass


class ConfigurationError(SubmissionError):
    pass
