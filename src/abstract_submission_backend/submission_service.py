"""
Submission lifecycle: validation, ID allocation, persistence and notifications.

A submission moves through absent -> created -> edited (any number of
times) -> locked. It is locked for everyone once the editing deadline
passes; nothing in this service ever deletes a record.

ID allocation is not transactional with the write that follows it. If the
insert fails after an ID was handed out, that ID stays consumed and the
sequence has a gap; IDs remain unique but are not guaranteed to be dense.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .database import DocumentDatabase, SubmissionStore
from .errors import ForbiddenError, MissingFieldsError, NotFoundError, ValidationError
from .models import REQUIRED_FIELDS, Settings, StoredSubmission, SubmissionView
from .notifications import MailMessage, NotificationDispatcher, build_transport
from .sequence import SUBMISSION_SEQUENCE, SequenceAllocator
from .utils import parse_deadline, parse_unique_id, sanitize_query_operators

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def missing_fields(payload: Dict[str, Any]) -> List[str]:
    """Required fields that are absent, not strings, or blank."""
    missing = []
    for name in REQUIRED_FIELDS:
        value = payload.get(name)
        if not isinstance(value, str) or not value.strip():
            missing.append(name)
    return missing


class SubmissionService:
    """
    Orchestrates submit, fetch and update over the store, the allocator and
    the notification dispatcher.

    Attributes:
        deadline_label: The editing deadline as configured, quoted in emails
        editing_closes_at: First instant at which updates are refused
    """

    def __init__(
        self,
        store: SubmissionStore,
        allocator: SequenceAllocator,
        dispatcher: NotificationDispatcher,
        admin_email: str,
        edit_deadline: str,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.allocator = allocator
        self.dispatcher = dispatcher
        self.admin_email = admin_email
        self.deadline_label = edit_deadline
        self.editing_closes_at = parse_deadline(edit_deadline)
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Clock = utc_now,
    ) -> "SubmissionService":
        database = DocumentDatabase.from_url(settings.database_url)
        if dispatcher is None:
            dispatcher = NotificationDispatcher(
                build_transport(settings.mail),
                sender=settings.mail.user,
                max_workers=settings.notification_workers,
            )
        return cls(
            store=SubmissionStore(database),
            allocator=SequenceAllocator(database),
            dispatcher=dispatcher,
            admin_email=settings.mail.admin_email,
            edit_deadline=settings.edit_deadline,
            clock=clock,
        )

    def is_editing_open(self) -> bool:
        return self.clock() < self.editing_closes_at

    def submit(self, raw_input: Any, origin: str) -> int:
        """
        Register a new submission and return its uniqueID.

        Args:
            raw_input: Decoded JSON body of the submission form
            origin: Scheme and host the edit link should point at

        Raises:
            ValidationError: If the body is not an object or required fields are missing
            PersistenceError: If allocation or the insert fails
        """
        if not isinstance(raw_input, dict):
            raise ValidationError("Submission must be a JSON object.")
        payload = sanitize_query_operators(raw_input)

        missing = missing_fields(payload)
        if missing:
            raise MissingFieldsError(missing)

        record = {name: payload[name] for name in REQUIRED_FIELDS}
        unique_id = self.allocator.next_value(SUBMISSION_SEQUENCE)
        record["uniqueID"] = unique_id
        record["createdAt"] = self.clock()
        stored = self.store.create(record)
        logger.info("Submission stored", extra={"unique_id": unique_id})

        edit_link = f"{origin.rstrip('/')}/edit?id={unique_id}"
        self.dispatcher.dispatch(self._confirmation_message(stored, edit_link))
        self.dispatcher.dispatch(self._admin_message(stored))
        return unique_id

    def fetch(self, raw_id: Any) -> SubmissionView:
        """
        Look up a submission for the edit form.

        Raises:
            ValidationError: If the id is missing or not an integer
            NotFoundError: If no submission has this id
        """
        unique_id = parse_unique_id(raw_id)
        stored = self.store.find_by_unique_id(unique_id)
        if stored is None:
            raise NotFoundError(unique_id)
        return stored.to_view()

    def update(self, raw_id: Any, patch: Any) -> SubmissionView:
        """
        Merge edits into an existing submission while editing is open.

        Only string values for the business fields of the form are applied;
        uniqueID, createdAt and unknown keys in the patch are ignored.

        Raises:
            ValidationError: If the id or patch is malformed
            ForbiddenError: If the editing deadline has passed
            NotFoundError: If no submission has this id
        """
        unique_id = parse_unique_id(raw_id)
        if not isinstance(patch, dict):
            raise ValidationError("Updated data must be a JSON object.")
        changes = {
            name: value
            for name, value in sanitize_query_operators(patch).items()
            if name in REQUIRED_FIELDS and isinstance(value, str)
        }

        if not self.is_editing_open():
            raise ForbiddenError("The editing deadline has passed. Submissions can no longer be updated.")

        stored = self.store.update_by_unique_id(unique_id, changes)
        if stored is None:
            raise NotFoundError(unique_id)
        logger.info(f"Submission updated ({', '.join(sorted(changes)) or 'no fields'})", extra={"unique_id": unique_id})

        self.dispatcher.dispatch(self._update_message(stored))
        return stored.to_view()

    def _confirmation_message(self, stored: StoredSubmission, edit_link: str) -> MailMessage:
        return MailMessage(
            to=stored.fields["submitterEmail"],
            subject="Submission Confirmation",
            text=(
                f"Thank you for your submission! Your unique ID is {stored.unique_id}.\n"
                f"Edit your submission here: {edit_link}.\n"
                f"Editing deadline: {self.deadline_label}."
            ),
        )

    def _admin_message(self, stored: StoredSubmission) -> MailMessage:
        return MailMessage(
            to=self.admin_email,
            subject="New Submission Received",
            text=(
                "A new abstract submission has been received:\n"
                f"Submitter: {stored.fields['submitterName']}\n"
                f"Title: {stored.fields['abstractTitle']}\n"
                f"Unique ID: {stored.unique_id}\n"
                "Check the admin dashboard for more details."
            ),
        )

    def _update_message(self, stored: StoredSubmission) -> MailMessage:
        return MailMessage(
            to=stored.fields.get("submitterEmail", ""),
            subject="Submission Updated",
            text=f"Your submission with ID {stored.unique_id} has been successfully updated.",
        )
