"""ContactMessageRepository for storing contact form submissions."""

from ganj.models.contact import ContactMessage
from ganj.repositories.base import BaseRepository


class ContactMessageRepository(BaseRepository[ContactMessage]):
    """Repository for ContactMessage entities."""

    async def add(self, *, name: str, email: str, message: str) -> ContactMessage:
        """Store a new message.

        Args:
            name: Sender name
            email: Sender email
            message: Message body

        Returns:
            The stored message with its id
        """
        return await self.create(ContactMessage(name=name, email=email, message=message))
