"""
Unit тесты хранилищ: одобренные пользователи, известный спам,
блеклист, участники клуба, счётчики доверия.
"""
import json
from unittest.mock import AsyncMock

import pytest

from doorman.services.approved_users import ApprovedUsersStore
from doorman.services.bad_messages import BadMessageStore
from doorman.services.blacklist import Blacklist
from doorman.services.club_directory import ClubDirectory
from doorman.services.trust import TrustCounters


class TestApprovedUsers:
    def test_approve_persists_json_list(self, tmp_path):
        path = tmp_path / "approved-users.json"
        store = ApprovedUsersStore(str(path))

        assert store.approve(42) is True
        assert store.is_approved(42)
        assert json.loads(path.read_text(encoding="utf-8")) == [42]

        reloaded = ApprovedUsersStore(str(path))
        assert reloaded.load() == 1
        assert reloaded.is_approved(42)

    def test_approve_is_idempotent(self, tmp_path):
        store = ApprovedUsersStore(str(tmp_path / "approved.json"))
        assert store.approve(1) is True
        assert store.approve(1) is False
        assert len(store) == 1

    def test_legacy_dict_format_is_accepted(self, tmp_path):
        path = tmp_path / "approved.json"
        path.write_text(json.dumps({"7": "2024-01-01T00:00:00", "8": "2024-01-02T00:00:00"}), encoding="utf-8")
        store = ApprovedUsersStore(str(path))
        assert store.load() == 2
        assert store.is_approved(7) and store.is_approved(8)

    def test_broken_file_starts_empty(self, tmp_path):
        path = tmp_path / "approved.json"
        path.write_text("{not json", encoding="utf-8")
        store = ApprovedUsersStore(str(path))
        assert store.load() == 0
        assert not store.is_approved(7)

    def test_remove(self, tmp_path):
        path = tmp_path / "approved.json"
        store = ApprovedUsersStore(str(path))
        store.approve(5)
        assert store.remove(5) is True
        assert store.remove(5) is False
        assert json.loads(path.read_text(encoding="utf-8")) == []


class TestBadMessages:
    def test_fingerprint_ignores_case_and_tricks(self, tmp_path):
        store = BadMessageStore(str(tmp_path / "bad.txt"))
        assert store.mark_bad("Купи КРИПТУ   сейчас") is True
        assert store.is_known_bad("купи крипту сейчас")
        assert not store.is_known_bad("купи хлеба")

    def test_persisted_and_reloaded(self, tmp_path):
        path = tmp_path / "bad.txt"
        BadMessageStore(str(path)).mark_bad("спам спам")
        reloaded = BadMessageStore(str(path))
        assert reloaded.load() == 1
        assert reloaded.is_known_bad("СПАМ спам")

    def test_duplicate_and_empty(self, tmp_path):
        store = BadMessageStore(str(tmp_path / "bad.txt"))
        assert store.mark_bad("спам") is True
        assert store.mark_bad("СПАМ") is False
        assert store.mark_bad("   ") is False
        assert store.is_known_bad("") is False


class TestBlacklist:
    @pytest.mark.asyncio
    async def test_local_banlist(self, tmp_path):
        path = tmp_path / "banlist.txt"
        path.write_text("123\nnot-an-id\n456 spammer\n", encoding="utf-8")
        blacklist = Blacklist(str(path))
        assert blacklist.load() == 2
        assert await blacklist.is_blacklisted(123)
        assert await blacklist.is_blacklisted(456)
        assert not await blacklist.is_blacklisted(789)

    @pytest.mark.asyncio
    async def test_remote_positive_is_cached(self, tmp_path):
        blacklist = Blacklist(str(tmp_path / "banlist.txt"), api_url="https://example.invalid/account")
        blacklist._remote_lookup = AsyncMock(return_value=True)

        assert await blacklist.is_blacklisted(1)
        assert await blacklist.is_blacklisted(1)
        blacklist._remote_lookup.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_remote_negative_is_not_cached(self, tmp_path):
        blacklist = Blacklist(str(tmp_path / "banlist.txt"), api_url="https://example.invalid/account")
        blacklist._remote_lookup = AsyncMock(return_value=False)

        assert not await blacklist.is_blacklisted(1)
        assert not await blacklist.is_blacklisted(1)
        assert blacklist._remote_lookup.await_count == 2


@pytest.mark.asyncio
async def test_club_directory_disabled_without_url():
    club = ClubDirectory("")
    assert club.enabled is False
    assert await club.get_club_username(1) is None


class TestTrustCounters:
    def test_record_and_remove(self, tmp_path):
        trust = TrustCounters(str(tmp_path / "counts.json"))
        assert trust.record_ham(1) == 1
        assert trust.record_ham(1) == 2
        trust.remove(1)
        assert trust.get(1) == 0

    def test_snapshot_roundtrip(self, tmp_path):
        path = tmp_path / "counts.json"
        trust = TrustCounters(str(path))
        trust.record_ham(10)
        trust.record_ham(10)
        trust.record_ham(20)
        assert trust.save() is True

        restored = TrustCounters(str(path))
        assert restored.restore() == 2
        assert restored.get(10) == 2
        assert restored.get(20) == 1

    def test_broken_snapshot(self, tmp_path):
        path = tmp_path / "counts.json"
        path.write_text("[1, 2", encoding="utf-8")
        trust = TrustCounters(str(path))
        assert trust.restore() == 0
        assert len(trust) == 0
