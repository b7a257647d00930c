"""
Tests for InMemoryUserDirectory (find-or-register semantics).
"""

import asyncio
import contextlib

import pytest

from childfinder.directory import InMemoryUserDirectory
from childfinder.errors import MissingSubjectIdentifier
from childfinder.models import IdentityProfile


def make_profile(subject_id="abc123", **fields):
    return IdentityProfile(subject_id=subject_id, **fields)


class YieldingDirectory(InMemoryUserDirectory):
    """Directory whose lookup yields to the event loop before reading."""

    async def find_by_subject_id(self, subject_id):
        await asyncio.sleep(0)
        return await super().find_by_subject_id(subject_id)


class TestUserDirectory:
    """Tests for the user directory"""

    @pytest.mark.asyncio
    async def test_unknown_subject(self):
        directory = InMemoryUserDirectory()

        assert await directory.find_by_subject_id("nobody") is None

    @pytest.mark.asyncio
    async def test_first_login_registers_user(self):
        directory = InMemoryUserDirectory()

        record = await directory.find_or_register(
            make_profile(display_name="Ada", email="ada@example.com", claims={"oid": "abc123"})
        )

        assert record.subject_id == "abc123"
        assert record.display_name == "Ada"
        assert record.claims == {"oid": "abc123"}
        assert await directory.find_by_subject_id("abc123") == record

    @pytest.mark.asyncio
    async def test_existing_record_is_returned_unchanged(self):
        directory = InMemoryUserDirectory()
        first = await directory.find_or_register(make_profile(display_name="First"))

        second = await directory.find_or_register(make_profile(display_name="Second"))

        assert second is first
        assert second.display_name == "First"
        assert len(directory) == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_logins_register_once(self):
        directory = YieldingDirectory()
        profile = make_profile()

        records = await asyncio.gather(*(directory.find_or_register(profile) for _ in range(25)))

        assert len(directory) == 1
        assert all(record is records[0] for record in records)

    @pytest.mark.asyncio
    async def test_unserialized_registration_duplicates_records(self):
        directory = YieldingDirectory()
        directory._lock = contextlib.nullcontext()
        profile = make_profile()

        records = await asyncio.gather(*(directory.find_or_register(profile) for _ in range(25)))

        assert len({id(record) for record in records}) > 1

    @pytest.mark.asyncio
    async def test_empty_subject_is_rejected(self):
        directory = InMemoryUserDirectory()

        with pytest.raises(MissingSubjectIdentifier):
            await directory.find_or_register(make_profile(subject_id=""))

        assert len(directory) == 0

    @pytest.mark.asyncio
    async def test_list_records(self):
        directory = InMemoryUserDirectory()
        await directory.find_or_register(make_profile("a"))
        await directory.find_or_register(make_profile("b"))

        records = await directory.list_records()

        assert sorted(record.subject_id for record in records) == ["a", "b"]
