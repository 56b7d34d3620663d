"""Tests for the file-backed durable tier."""

import pytest

from chat_orchestrator.domain.errors import PersistenceError
from chat_orchestrator.domain.models.conversation import ConversationIdentity
from chat_orchestrator.infrastructure.persistence.file_ledger import (
    FileConversationRepository, FileLedger
)

from conftest import assistant, user


IDENTITY = ConversationIdentity(user_id="alice", scope_id="guild-1")


class TestFileLedger:

    def test_write_read_delete(self, tmp_path):
        ledger = FileLedger(str(tmp_path))

        ledger.write("a:b", {"value": 1})

        assert ledger.read("a:b") == {"value": 1}
        assert ledger.keys() == ["a_b"]
        assert ledger.delete("a:b") is True
        assert ledger.delete("a:b") is False
        assert ledger.read("a:b") is None

    def test_corrupt_document_is_moved_aside(self, tmp_path):
        ledger = FileLedger(str(tmp_path))
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

        assert ledger.read("broken") is None
        assert not (tmp_path / "broken.json").exists()
        assert len(list(tmp_path.glob("broken.corrupt.*.json"))) == 1
        assert ledger.keys() == []


class TestFileConversationRepository:

    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        repository = FileConversationRepository(FileLedger(str(tmp_path)))

        await repository.save(IDENTITY, [user("hi"), assistant("hello")], 1000.0)
        record = await repository.get_by_user(IDENTITY)

        assert record.user_id == "alice"
        assert record.scope_id == "guild-1"
        assert record.messages == [user("hi"), assistant("hello")]
        assert record.last_activity == 1000.0
        assert record.updated_at is not None

    @pytest.mark.asyncio
    async def test_direct_conversation_is_separate(self, tmp_path):
        repository = FileConversationRepository(FileLedger(str(tmp_path)))
        direct = ConversationIdentity(user_id="alice")

        await repository.save(direct, [user("dm")], 1000.0)

        assert await repository.get_by_user(IDENTITY) is None
        assert (await repository.get_by_user(direct)).scope_id is None

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        repository = FileConversationRepository(FileLedger(str(tmp_path)))
        await repository.save(IDENTITY, [user("hi")], 1000.0)

        assert await repository.delete(IDENTITY) is True
        assert await repository.get_by_user(IDENTITY) is None

    @pytest.mark.asyncio
    async def test_list_recent_filters_and_orders(self, tmp_path):
        repository = FileConversationRepository(FileLedger(str(tmp_path)))
        for name, last_activity in [("old", 10.0), ("mid", 500.0), ("new", 900.0)]:
            await repository.save(ConversationIdentity(user_id=name), [user(name)], last_activity)

        records = await repository.list_recent(since=100.0)

        assert [r.user_id for r in records] == ["new", "mid"]

    @pytest.mark.asyncio
    async def test_malformed_document_raises_persistence_error(self, tmp_path):
        ledger = FileLedger(str(tmp_path))
        ledger.write(IDENTITY.key, {"userId": "alice", "messages": [{"role": "user", "content": "hi"}]})
        repository = FileConversationRepository(ledger)

        with pytest.raises(PersistenceError):
            await repository.get_by_user(IDENTITY)

    @pytest.mark.asyncio
    async def test_unknown_role_raises_persistence_error(self, tmp_path):
        ledger = FileLedger(str(tmp_path))
        ledger.write(IDENTITY.key, {
            "userId": "alice", "lastActivity": 1000.0, "messages": [{"role": "tool", "content": "x"}]
        })
        repository = FileConversationRepository(ledger)

        with pytest.raises(PersistenceError):
            await repository.get_by_user(IDENTITY)

    @pytest.mark.asyncio
    async def test_list_recent_skips_undecodable_documents(self, tmp_path):
        ledger = FileLedger(str(tmp_path))
        repository = FileConversationRepository(ledger)
        await repository.save(ConversationIdentity(user_id="good"), [user("hi")], 500.0)
        ledger.write("bad:dm", {"userId": "bad", "lastActivity": 600.0, "messages": [{"role": "tool"}]})
        ledger.write("partial:dm", {"userId": "partial", "messages": []})

        records = await repository.list_recent(since=100.0)

        assert [r.user_id for r in records] == ["good"]
