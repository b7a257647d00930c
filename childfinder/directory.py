"""
User Directory
==============

Process-wide registry of users keyed by the identity provider's subject
identifier. Users are registered automatically on their first successful
login and are never updated afterwards: a later login with different claims
returns the record captured at registration.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Protocol

from .errors import MissingSubjectIdentifier
from .models import IdentityProfile, UserRecord

logger = logging.getLogger(__name__)


class UserDirectory(Protocol):
    async def find_by_subject_id(self, subject_id: str) -> Optional[UserRecord]: ...

    async def find_or_register(self, profile: IdentityProfile) -> UserRecord: ...

    async def list_records(self) -> List[UserRecord]: ...


class InMemoryUserDirectory:
    """
    In-memory directory backed by a dict index.

    Registration is serialized with an asyncio.Lock so concurrent first logins
    for the same subject produce a single record.
    """

    def __init__(self):
        self._records: Dict[str, UserRecord] = {}
        self._lock = asyncio.Lock()

    async def find_by_subject_id(self, subject_id: str) -> Optional[UserRecord]:
        """
        Look up a user by subject identifier.

        Returns:
            The registered record, or None if the subject is unknown
        """
        return self._records.get(subject_id)

    async def find_or_register(self, profile: IdentityProfile) -> UserRecord:
        """
        Return the existing record for the profile's subject or register it.

        Args:
            profile: Verified provider profile

        Returns:
            The registered record (unchanged if it already existed)

        Raises:
            MissingSubjectIdentifier: If the profile has an empty subject id
        """
        if not profile.subject_id:
            raise MissingSubjectIdentifier("Profile has no subject identifier")

        async with self._lock:
            existing = await self.find_by_subject_id(profile.subject_id)
            if existing is not None:
                return existing

            record = UserRecord.from_profile(profile)
            self._records[record.subject_id] = record

        logger.info(
            "Auto-registered new user",
            extra={"subject_id": record.subject_id, "directory_size": len(self._records)}
        )
        return record

    async def list_records(self) -> List[UserRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)
