"""Do-not-call registry."""

import logging
import re

from rezkyoo.models import DoNotCallEntry
from rezkyoo.services.storage import DNC, DocumentStore

logger = logging.getLogger(__name__)


def normalize_phone(phone_number: str | None) -> str | None:
    """Strip formatting so that equivalent numbers compare equal.

    "+1 (415) 555-0100" and "+14155550100" both become "+14155550100".
    """
    if not phone_number:
        return None
    digits = re.sub(r"[^+\d]", "", phone_number)
    return digits or None


class DoNotCallRegistry:
    """Phone numbers that asked not to be called again."""

    def __init__(self, documents: DocumentStore) -> None:
        self.documents = documents

    def contains(self, phone_number: str | None) -> bool:
        """Check whether a number has opted out."""
        key = normalize_phone(phone_number)
        return key is not None and self.documents.get(DNC, key) is not None

    def add(self, phone_number: str, restaurant_name: str | None = None) -> DoNotCallEntry | None:
        """Register an opt-out.

        Args:
            phone_number: Number to exclude
            restaurant_name: Who asked

        Returns:
            The stored entry, or None if the number is unusable
        """
        key = normalize_phone(phone_number)
        if key is None:
            logger.warning(f"Cannot add empty phone number to do-not-call list ({restaurant_name})")
            return None

        existing = self.documents.get(DNC, key)
        if existing is not None:
            return DoNotCallEntry.model_validate(existing)

        entry = DoNotCallEntry(phone_number=key, restaurant_name=restaurant_name)
        self.documents.put(DNC, key, entry.model_dump(mode="json"))
        logger.info(f"Added {key} ({restaurant_name}) to the do-not-call list")
        return entry
