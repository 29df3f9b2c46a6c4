"""Contact form handling: validate, store, notify.

A submission is stored in ``contact_messages`` first. The notification email
is sent afterwards through the Resend REST API and is best-effort: once the
message is stored the submission succeeds even if the email fails.
"""

import html
import re
from dataclasses import dataclass

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ganj.config import Settings, get_settings
from ganj.core.exceptions import (
    ContactValidationError,
    NotificationError,
    StorageError,
)
from ganj.core.retry import with_network_retry
from ganj.repositories.contact import ContactMessageRepository

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r".+@.+\..+")

MAX_NAME_LENGTH = 120
MAX_EMAIL_LENGTH = 200
MAX_MESSAGE_LENGTH = 5000

MISSING_FIELDS = "تمام فیلدها الزامی هستند."
INVALID_EMAIL = "ایمیل نامعتبر است."
TOO_LONG = "طول ورودی بیش از حد مجاز است."


@dataclass
class ContactSubmission:
    name: str
    email: str
    message: str

    @classmethod
    def clean(
        cls, name: str | None, email: str | None, message: str | None
    ) -> "ContactSubmission":
        """Trim and validate the raw form fields.

        Raises:
            ContactValidationError: If a field is missing, the email is
                malformed, or a field is too long
        """
        submission = cls(
            name=(name or "").strip(),
            email=(email or "").strip(),
            message=(message or "").strip(),
        )
        if not submission.name or not submission.email or not submission.message:
            raise ContactValidationError(MISSING_FIELDS)
        if not EMAIL_PATTERN.search(submission.email):
            raise ContactValidationError(INVALID_EMAIL, field="email")
        if (
            len(submission.name) > MAX_NAME_LENGTH
            or len(submission.email) > MAX_EMAIL_LENGTH
            or len(submission.message) > MAX_MESSAGE_LENGTH
        ):
            raise ContactValidationError(TOO_LONG)
        return submission


class ContactService:
    """Accepts contact form submissions.

    Usage:
        ```python
        contact = ContactService(get_session_factory())
        await contact.submit(name="...", email="a@b.ir", message="...")
        ```
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            session_factory: Factory for the session the message is stored with
            settings: Application settings (defaults to ``get_settings()``)
        """
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._settings.ganjoor_timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def submit(
        self, *, name: str | None, email: str | None, message: str | None
    ) -> int:
        """Validate, store and announce a submission.

        Returns:
            Id of the stored message

        Raises:
            ContactValidationError: If the submission is invalid
            StorageError: If the message could not be stored
        """
        submission = ContactSubmission.clean(name, email, message)

        try:
            async with self._session_factory() as session:
                stored = await ContactMessageRepository(session).add(
                    name=submission.name,
                    email=submission.email,
                    message=submission.message,
                )
                await session.commit()
                message_id = stored.id
        except SQLAlchemyError as e:
            logger.error("contact_store_failed", error=str(e))
            raise StorageError() from e

        logger.info("contact_message_stored", message_id=message_id)

        try:
            await self.notify(submission)
        except NotificationError as e:
            logger.warning("contact_notification_failed", error=e.message, **e.details)

        return message_id

    async def notify(self, submission: ContactSubmission) -> bool:
        """Email the submission to the site owner.

        Returns:
            False if no API key or recipient is configured, True once sent

        Raises:
            NotificationError: If the email API call fails
        """
        api_key = self._settings.resend_api_key
        recipient = self._settings.contact_to_email
        if api_key is None or not recipient:
            logger.debug("contact_notification_skipped")
            return False

        client = await self._get_client()
        token = api_key.get_secret_value()

        async def send() -> httpx.Response:
            return await client.post(
                self._settings.resend_api_url,
                headers={"Authorization": f"Bearer {token}"},
                json={
                    "from": self._settings.contact_from_email,
                    "to": [recipient],
                    "subject": f"پیام جدید از فرم تماس: {submission.name}",
                    "html": self.render_html(submission),
                },
            )

        try:
            response = await with_network_retry(
                send,
                base_delay=self._settings.retry_base_delay,
                max_delay=self._settings.retry_max_delay,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Resend failed: {e.response.status_code}",
                details={"status": e.response.status_code, "body": e.response.text},
            ) from e
        except httpx.RequestError as e:
            raise NotificationError(f"Resend error: {e}") from e

        logger.info("contact_notification_sent", recipient=recipient)
        return True

    @staticmethod
    def render_html(submission: ContactSubmission) -> str:
        """HTML body of the notification; user input is escaped."""
        body = html.escape(submission.message).replace("\n", "<br/>")
        return (
            f"<p><strong>نام:</strong> {html.escape(submission.name)}</p>"
            f"<p><strong>ایمیل:</strong> {html.escape(submission.email)}</p>"
            f"<p><strong>پیام:</strong></p><p>{body}</p>"
        )
