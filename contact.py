"""Contact form submissions."""

import logging

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document
from errors import DataError
from schemas import ContactMessage

logger = logging.getLogger(__name__)

CONTACT_MESSAGES = "contact_messages"


class ContactService:
    def __init__(self, db: Database):
        self.db = db

    def submit(self, message: ContactMessage) -> ContactMessage:
        # Always stored as new; triage happens in the admin tools
        message = message.model_copy(update={"status": "new", "id": None})
        try:
            message_id = create_document(self.db, CONTACT_MESSAGES, message)
        except PyMongoError as e:
            raise DataError("submit message", e)
        logger.info("Contact message %s received", message_id)
        return message.model_copy(update={"id": message_id})
