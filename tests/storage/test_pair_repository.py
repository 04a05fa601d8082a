"""Tests for the pair repository."""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from token_sniper.ingestor.models import MigrationStatus
from token_sniper.storage.pair_repository import (
    ChangeKind,
    PairFilter,
    PairRepository,
    PauseState,
    SortKey,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class TestInsert:
    def test_insert_and_snapshot_newest_first(self, make_pair) -> None:
        repo = PairRepository(capacity=10)
        for i in range(3):
            assert repo.insert(make_pair(id=f"mint{i}"))

        assert [p.id for p in repo.snapshot()] == ["mint2", "mint1", "mint0"]
        assert len(repo) == 3
        assert "mint1" in repo

    def test_capacity_bound_keeps_most_recent(self, make_pair) -> None:
        repo = PairRepository(capacity=5)
        for i in range(12):
            repo.insert(make_pair(id=f"mint{i}"))

        assert len(repo) == 5
        assert [p.id for p in repo.snapshot()] == [f"mint{i}" for i in range(11, 6, -1)]
        assert repo.stats.evicted == 7

    def test_reinsert_replaces_in_place(self, make_pair) -> None:
        repo = PairRepository(capacity=3)
        repo.insert(make_pair(id="a"))
        repo.insert(make_pair(id="b"))
        repo.insert(make_pair(id="a", liquidity=Decimal("1")))

        assert len(repo) == 2
        assert repo.get("a").liquidity == Decimal("1")
        assert repo.stats.updated == 1

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            PairRepository(capacity=0)

    def test_update_missing_pair(self, make_pair) -> None:
        repo = PairRepository()
        assert repo.update(make_pair(id="missing")) is False


class TestApply:
    def test_change_sees_current_record(self, make_pair) -> None:
        repo = PairRepository()
        repo.insert(make_pair(id="a", liquidity=Decimal("10")))
        repo.apply("a", lambda current: current.with_market_data(make_pair(id="a", liquidity=Decimal("90"))))
        changes: list[ChangeKind] = []
        repo.add_listener(lambda kind, pair: changes.append(kind))

        merged = repo.apply("a", lambda current: replace(current, description="enriched"))

        assert merged is repo.get("a")
        assert merged.liquidity == Decimal("90")
        assert merged.description == "enriched"
        assert changes == [ChangeKind.UPDATED]

    def test_missing_or_paused(self, make_pair) -> None:
        repo = PairRepository()
        calls: list[str] = []

        def change(current):
            calls.append(current.id)
            return current

        assert repo.apply("missing", change) is None
        repo.insert(make_pair(id="a"))
        repo.pause()
        assert repo.apply("a", change) is None

        assert calls == []
        assert repo.stats.dropped_while_paused == 1


class TestListeners:
    def test_listener_receives_changes(self, make_pair) -> None:
        repo = PairRepository(capacity=1)
        changes: list[tuple[ChangeKind, str]] = []
        repo.add_listener(lambda kind, pair: changes.append((kind, pair.id)))

        repo.insert(make_pair(id="a"))
        repo.insert(make_pair(id="b"))

        assert changes == [
            (ChangeKind.INSERTED, "a"),
            (ChangeKind.INSERTED, "b"),
            (ChangeKind.EVICTED, "a"),
        ]

    def test_failing_listener_does_not_block_insert(self, make_pair) -> None:
        repo = PairRepository()

        def broken(kind, pair):
            raise RuntimeError("boom")

        repo.add_listener(broken)
        assert repo.insert(make_pair()) is True
        assert len(repo) == 1


class TestPause:
    def test_no_mutation_while_paused(self, make_pair) -> None:
        repo = PairRepository(capacity=3)
        repo.insert(make_pair(id="a", liquidity=Decimal("10")))
        seen: list[ChangeKind] = []
        repo.add_listener(lambda kind, pair: seen.append(kind))
        before = repo.snapshot()

        assert repo.pause() is True
        for i in range(50):
            assert repo.insert(make_pair(id=f"new{i}")) is False
        assert repo.update(make_pair(id="a", liquidity=Decimal("99"))) is False

        assert repo.snapshot() == before
        assert seen == []
        assert repo.stats.dropped_while_paused == 51

    def test_resume_after_hover(self, make_pair) -> None:
        repo = PairRepository()
        repo.pause()
        assert repo.pause_state == PauseState.PAUSED_BY_HOVER
        assert repo.resume() is True
        assert repo.pause_state == PauseState.RUNNING
        assert repo.insert(make_pair()) is True

    def test_resume_is_noop_under_dialog(self) -> None:
        repo = PairRepository()
        repo.pause()
        repo.dialog_opened()

        assert repo.resume() is False
        assert repo.pause_state == PauseState.PAUSED_BY_DIALOG
        assert repo.pause() is False

        assert repo.dialog_closed() is True
        assert repo.pause_state == PauseState.RUNNING

    def test_dialog_closed_without_dialog(self) -> None:
        repo = PairRepository()
        repo.pause()
        assert repo.dialog_closed() is False
        assert repo.pause_state == PauseState.PAUSED_BY_HOVER


class TestQuery:
    @pytest.fixture
    def repo(self, make_pair) -> PairRepository:
        repo = PairRepository()
        repo.insert(
            make_pair(
                id="old",
                name="Old Cat",
                symbol="OCAT",
                liquidity=Decimal("500"),
                volume_24h=Decimal("10"),
                created_at=NOW - timedelta(hours=5),
                dex="raydium",
                migration_status=MigrationStatus.MIGRATED,
            )
        )
        repo.insert(
            make_pair(
                id="mid",
                name="Mid Dog",
                symbol="MDOG",
                liquidity=None,
                volume_24h=Decimal("900"),
                created_at=NOW - timedelta(hours=1),
            )
        )
        repo.insert(
            make_pair(
                id="new",
                name="New Frog",
                symbol="FROG",
                liquidity=Decimal("3000"),
                volume_24h=None,
                created_at=NOW - timedelta(minutes=5),
            )
        )
        return repo

    def test_sort_newest(self, repo) -> None:
        assert [p.id for p in repo.query(now=NOW)] == ["new", "mid", "old"]

    def test_sort_liquidity_unknown_last(self, repo) -> None:
        result = repo.query(sort=SortKey.LIQUIDITY, now=NOW)
        assert [p.id for p in result] == ["new", "old", "mid"]

    def test_sort_volume(self, repo) -> None:
        result = repo.query(sort=SortKey.VOLUME, now=NOW)
        assert [p.id for p in result] == ["mid", "old", "new"]

    def test_search(self, repo) -> None:
        result = repo.query(PairFilter(search="dog"), now=NOW)
        assert [p.id for p in result] == ["mid"]

    def test_min_liquidity_excludes_unknown(self, repo) -> None:
        result = repo.query(PairFilter(min_liquidity=Decimal("100")), now=NOW)
        assert {p.id for p in result} == {"new", "old"}

    def test_dex_and_status(self, repo) -> None:
        result = repo.query(
            PairFilter(dexes=frozenset({"raydium"}), statuses=frozenset({MigrationStatus.MIGRATED})),
            now=NOW,
        )
        assert [p.id for p in result] == ["old"]

    def test_max_age(self, repo) -> None:
        result = repo.query(PairFilter(max_age=timedelta(hours=2)), now=NOW)
        assert {p.id for p in result} == {"new", "mid"}

    def test_clear(self, repo) -> None:
        removed: list[tuple[ChangeKind, str]] = []
        repo.add_listener(lambda kind, pair: removed.append((kind, pair.id)))

        assert repo.clear() is True

        assert len(repo) == 0
        assert sorted(removed) == [(ChangeKind.REMOVED, i) for i in ("mid", "new", "old")]

    def test_clear_refused_while_paused(self, repo) -> None:
        seen: list[ChangeKind] = []
        repo.add_listener(lambda kind, pair: seen.append(kind))
        repo.pause()

        assert repo.clear() is False

        assert len(repo) == 3
        assert seen == []
        assert repo.stats.dropped_while_paused == 1
