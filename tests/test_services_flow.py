import logging
import threading
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from runboard.database import Base
from runboard.errors import NotFoundError, ValidationError
from runboard.models import Category, Run
from runboard.rules import group_key
from runboard.services import (
    PlayerLockRegistry,
    auto_claim_runs,
    claim_run,
    create_run,
    delete_run,
    eligible_runs,
    group_leaderboard,
    list_unclaimed_runs,
    migrate_category_thresholds,
    persist_run_updates,
    players_by_points,
    player_locks,
    recalculate_all,
    recent_runs,
    recompute_player,
    refresh_group,
    set_run_obsolete,
    unverified_runs,
    unverify_run,
    update_category,
    update_points_config,
    update_run,
    verify_run,
)
from runboard.store import SqlRunStore


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=True, autocommit=False)
    return SessionLocal()


def _store() -> SqlRunStore:
    return SqlRunStore(_session())


def _player(store, uid, src_username=None):
    player = store.add_player({"uid": uid, "display_name": uid.title(), "src_username": src_username})
    store.commit()
    return player


def _submit(store, player_id, time, **extra) -> Run:
    raw = {
        "player_id": player_id,
        "player_name": player_id or "Guest",
        "category": "any",
        "platform": "gc",
        "time": time,
        "date": "2024-01-01",
        "verified": True,
    }
    raw.update(extra)
    run, _ = create_run(store, raw)
    return run


def _total(store, uid) -> int:
    return store.get_player(uid).total_points


def test_two_solo_runs_are_ranked_and_pointed():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")

    slow = _submit(store, "p1", "00:10:00")
    fast = _submit(store, "p2", "00:09:00")

    assert (fast.rank, fast.points) == (1, 70)
    assert (slow.rank, slow.points) == (2, 50)
    assert _total(store, "p1") == 50
    assert _total(store, "p2") == 70


def test_coop_pairs_split_points_between_partners():
    store = _store()
    for uid in ("p1", "p2", "p3", "p4"):
        _player(store, uid)

    _submit(store, "p3", "00:10:00", run_type="co-op", player2_id="p4", player2_name="p4")
    winner = _submit(store, "p1", "00:09:00", run_type="coop", player2_id="p2", player2_name="p2")

    assert (winner.rank, winner.points) == (1, 35)
    assert _total(store, "p1") == 35
    assert _total(store, "p2") == 35
    assert _total(store, "p3") == 25
    assert _total(store, "p4") == 25


def test_obsolete_run_keeps_base_points_but_loses_rank():
    store = _store()
    for uid in ("p1", "p2", "p3"):
        _player(store, uid)
    a = _submit(store, "p1", "00:09:00")
    b = _submit(store, "p2", "00:10:00")
    c = _submit(store, "p3", "00:08:00")
    assert c.rank == 1

    result = set_run_obsolete(store, c.id, True)

    assert result.ok
    assert (c.rank, c.points) == (None, 10)
    assert (a.rank, a.points) == (1, 70)
    assert (b.rank, b.points) == (2, 50)
    assert _total(store, "p3") == 10
    assert _total(store, "p1") == 70


def test_claiming_an_imported_run_credits_the_player():
    store = _store()
    _player(store, "p1", src_username="speedyrunner")
    _player(store, "p2")
    run = _submit(
        store,
        None,
        "00:09:00",
        player_name="Speedy",
        imported_from_src=True,
        src_player_name="SpeedyRunner",
    )

    assert (run.rank, run.points) == (1, 70)
    assert _total(store, "p1") == 0
    assert list_unclaimed_runs(store, "SPEEDYRUNNER") == [run]

    result = claim_run(store, run.id, "p1")

    assert result.ok
    assert run.player_id == "p1"
    assert _total(store, "p1") == 70
    assert list_unclaimed_runs(store, "speedyrunner") == []


def test_claim_rejects_mismatched_identity_without_force():
    store = _store()
    _player(store, "p1", src_username="someoneelse")
    run = _submit(store, None, "00:09:00", player_name="Speedy")

    result = claim_run(store, run.id, "p1")

    assert not result.ok
    assert run.player_id is None
    assert _total(store, "p1") == 0


def test_forced_claim_moves_points_between_players():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    run = _submit(store, "p1", "00:09:00")
    assert _total(store, "p1") == 70

    assert not claim_run(store, run.id, "p2").ok
    result = claim_run(store, run.id, "p2", force=True)

    assert result.ok
    assert run.player_id == "p2"
    assert _total(store, "p1") == 0
    assert _total(store, "p2") == 70


def test_claim_fills_second_slot_of_coop_run():
    store = _store()
    _player(store, "p1")
    _player(store, "p2", src_username="Bee")
    run = _submit(
        store,
        "p1",
        "00:09:00",
        run_type="co-op",
        player2_name="B",
        src_player2_name="bee",
        imported_from_src=True,
    )

    result = claim_run(store, run.id, "p2")

    assert result.ok
    assert run.player2_id == "p2"
    assert _total(store, "p1") == 35
    assert _total(store, "p2") == 35


def test_unverifying_a_ranked_run_promotes_the_next_run():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    fast = _submit(store, "p1", "00:09:00")
    slow = _submit(store, "p2", "00:10:00")

    result = unverify_run(store, fast.id)

    assert result.ok
    assert fast.rank is None
    assert fast.points == 10
    assert _total(store, "p1") == 0
    assert store.get_player("p1").total_runs == 0
    assert (slow.rank, slow.points) == (1, 70)
    assert _total(store, "p2") == 70


def test_verifying_a_pending_run_ranks_it():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    ranked = _submit(store, "p1", "00:10:00")
    pending = _submit(store, "p2", "00:09:00", verified=False)
    assert pending.rank is None
    assert ranked.rank == 1

    verify_run(store, pending.id, "mod")

    assert pending.verified_by == "mod"
    assert (pending.rank, pending.points) == (1, 70)
    assert (ranked.rank, ranked.points) == (2, 50)
    assert _total(store, "p1") == 50


def test_slower_personal_run_still_earns_base_points():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    best = _submit(store, "p1", "00:09:00")
    older = _submit(store, "p1", "00:10:00")
    other = _submit(store, "p2", "00:09:30")

    assert (best.rank, best.points) == (1, 70)
    assert (older.rank, older.points) == (None, 10)
    assert (other.rank, other.points) == (2, 50)
    assert _total(store, "p1") == 80


def test_refresh_group_twice_changes_nothing():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    run = _submit(store, "p1", "00:09:00")
    _submit(store, "p2", "00:10:00")

    first = refresh_group(store, group_key(run))
    second = refresh_group(store, group_key(run))

    assert first.batch.updated == 0
    assert second.batch.updated == 0
    assert first.ranks == second.ranks
    assert first.points == second.points


def test_player_total_is_the_sum_of_eligible_run_points():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    _submit(store, "p1", "00:09:00")
    _submit(store, "p1", "00:20:00", category="low")
    _submit(store, "p1", "00:05:00", run_type="co-op", player2_id="p2", player2_name="p2")
    _submit(store, "p1", "00:04:00", verified=False)

    result = recompute_player(store, "p1")

    assert result.ok
    runs = eligible_runs(store, "p1")
    assert result.total_points == sum(run.points for run in runs) == 70 + 70 + 35
    assert result.total_runs == len(runs) == 3
    assert _total(store, "p1") == result.total_points


def test_recompute_for_missing_player_writes_nothing():
    store = _store()

    result = recompute_player(store, "ghost")

    assert not result.ok
    assert result.errors
    assert store.get_player("ghost") is None


class _BrokenGroupStore(SqlRunStore):
    def find_runs(self, limit=None, **filters):
        if filters.get("category") == "broken":
            raise SQLAlchemyError("group query failed")
        return super().find_runs(limit=limit, **filters)


def test_failed_group_is_reported_and_keeps_cached_points():
    db = _session()
    store = SqlRunStore(db)
    _player(store, "p1")
    good = _submit(store, "p1", "00:09:00")
    broken = _submit(store, "p1", "00:10:00", category="broken")
    assert broken.points == 70

    result = recompute_player(_BrokenGroupStore(db), "p1")

    assert not result.ok
    assert result.failed == [broken.id]
    assert result.errors
    assert result.total_points == good.points + 70
    assert _total(store, "p1") == 140


def test_persist_reports_failed_chunks_and_keeps_the_rest():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    a = _submit(store, "p1", "00:09:00")
    b = _submit(store, "p2", "00:10:00")

    result = persist_run_updates(
        store,
        [(a.id, {"points": 5}), ("missing", {"points": 1}), (b.id, {"points": 6})],
        chunk_size=1,
    )

    assert result.updated == 2
    assert result.failed == ["missing"]
    assert len(result.errors) == 1
    assert (a.points, b.points) == (5, 6)


def test_update_run_reranks_old_and_new_groups():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    moved = _submit(store, "p1", "00:09:00")
    stayed = _submit(store, "p2", "00:10:00")

    run, result = update_run(store, moved.id, {"category": "low", "rank": 3, "points": 999})

    assert result.ok
    assert run.category == "low"
    assert (run.rank, run.points) == (1, 70)
    assert (stayed.rank, stayed.points) == (1, 70)
    assert _total(store, "p1") == 70
    assert _total(store, "p2") == 70


def test_update_run_rejects_invalid_changes():
    store = _store()
    _player(store, "p1")
    run = _submit(store, "p1", "00:09:00")

    with pytest.raises(ValidationError):
        update_run(store, run.id, {"time": "nine minutes"})
    assert run.time == "00:09:00"


def test_delete_run_promotes_remaining_runs():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    fast = _submit(store, "p1", "00:09:00")
    slow = _submit(store, "p2", "00:10:00")

    result = delete_run(store, fast.id)

    assert result.ok
    assert store.get_run(fast.id) is None
    assert (slow.rank, slow.points) == (1, 70)
    assert _total(store, "p1") == 0
    assert _total(store, "p2") == 70


def test_create_run_rejects_invalid_input_and_unknown_players():
    store = _store()

    with pytest.raises(ValidationError) as exc:
        create_run(store, {"player_name": "Runner", "category": "any", "platform": "gc", "date": "2024-01-01"})
    assert "Time is required" in exc.value.errors

    with pytest.raises(NotFoundError):
        _submit(store, "nobody", "00:09:00")
    assert store.find_runs() == []


def test_auto_claim_picks_up_every_matching_run():
    store = _store()
    _player(store, "p1", src_username="speedy")
    _submit(store, None, "00:09:00", player_name="Speedy")
    _submit(store, None, "00:20:00", player_name="speedy", category="low")
    _submit(store, None, "00:08:00", player_name="Other")

    result = auto_claim_runs(store, "p1")

    assert result.ok
    assert result.updated == 2
    # Second place behind "Other" in any%, first in low%.
    assert _total(store, "p1") == 50 + 70
    assert store.get_player("p1").total_runs == 2


def test_auto_claim_without_username_reports_error():
    store = _store()
    _player(store, "p1")

    result = auto_claim_runs(store, "p1")

    assert not result.ok
    assert result.updated == 0


def test_recalculate_sweep_resumes_from_cursor():
    db = _session()
    store = SqlRunStore(db)
    _player(store, "p1")
    _player(store, "p2")
    _submit(store, "p1", "00:09:00")
    _submit(store, "p2", "00:10:00")
    _submit(store, "p1", "00:20:00", category="low")
    for run in store.find_runs():
        run.rank = None
        run.points = 0
    for player in store.list_players():
        player.total_points = 0
    db.commit()

    seen = []
    first = recalculate_all(store, page_size=2, max_pages=1, progress=lambda n, cursor: seen.append(n))

    assert not first.done
    assert first.processed_runs == 2
    assert first.players_recomputed == 0
    assert seen == [2]

    second = recalculate_all(store, start_after=first.cursor, page_size=2)

    assert second.done
    assert second.processed_runs == 1
    assert second.players_recomputed == 2
    assert _total(store, "p1") == 70 + 70
    assert _total(store, "p2") == 50
    assert sorted(run.points for run in store.find_runs()) == [50, 70, 70]


def test_threshold_migration_enables_time_bonus():
    db = _session()
    store = SqlRunStore(db)
    db.add_all(
        [
            Category(id="any", name="Any%"),
            Category(id="nc", name="Nocuts Noships"),
            Category(id="low", name="Low%"),
        ]
    )
    db.commit()
    _player(store, "p1")
    run = _submit(store, "p1", "00:50:00")
    assert run.points == 70

    result = migrate_category_thresholds(store)

    assert result.updated == 2
    assert store.get_category("any").bonus_threshold_seconds == 3300
    assert store.get_category("nc").bonus_threshold_seconds == 1740
    assert store.get_category("low").bonus_threshold_seconds is None

    assert run.points == 95
    assert _total(store, "p1") == 95


def test_group_leaderboard_lists_best_runs_in_order():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    best = _submit(store, "p1", "00:09:00")
    older = _submit(store, "p1", "00:10:00")
    other = _submit(store, "p2", "00:09:30")
    _submit(store, "p2", "00:08:00", verified=False)

    entries = group_leaderboard(store, group_key(best))
    assert [e["id"] for e in entries] == [best.id, other.id]
    assert [e["position"] for e in entries] == [1, 2]
    assert entries[0]["player_name"] == "P1"

    with_obsolete = group_leaderboard(store, group_key(best), include_obsolete=True)
    assert [e["id"] for e in with_obsolete] == [best.id, other.id, older.id]


def test_points_leaderboard_orders_players_by_total():
    store = _store()
    _player(store, "p1")
    _player(store, "p2")
    _player(store, "p3")
    _submit(store, "p1", "00:10:00")
    _submit(store, "p2", "00:09:00")

    rows = players_by_points(store)

    assert [row["uid"] for row in rows] == ["p2", "p1"]
    assert rows[0]["total_points"] == 70


def test_unclaimed_lookup_is_not_capped_by_group_fetch_limit():
    store = SqlRunStore(_session(), fetch_limit=2)
    _player(store, "p1", src_username="zed")
    for i in range(3):
        _submit(store, None, "00:09:00", player_name=f"Other{i}", category=f"c{i}")
    zed = _submit(store, None, "00:09:00", player_name="Someone", src_player_name="Zed", category="z")
    _submit(store, None, "00:09:00", player_name="zed", src_player_name="NotZed", category="y")

    assert list_unclaimed_runs(store, "ZED") == [zed]

    result = auto_claim_runs(store, "p1")

    assert result.updated == 1
    assert zed.player_id == "p1"
    assert _total(store, "p1") == 70


def test_recompute_counts_every_run_beyond_group_fetch_limit():
    store = SqlRunStore(_session(), fetch_limit=2)
    _player(store, "p1")
    for category in ("a", "b", "c"):
        _submit(store, "p1", "00:09:00", category=category)

    result = recompute_player(store, "p1")

    assert result.ok
    assert result.total_runs == 3
    assert result.total_points == 210


def test_recent_and_pending_runs_are_ordered_in_the_query():
    store = SqlRunStore(_session(), fetch_limit=2)
    _player(store, "p1")
    _submit(store, "p1", "00:09:00", category="a", date="2020-01-01")
    older = _submit(store, "p1", "00:09:00", category="b", date="2020-01-02")
    newest = _submit(store, "p1", "00:09:00", category="c", date="2025-01-01")
    pending = [_submit(store, "p1", "00:08:00", category=f"p{i}", verified=False) for i in range(3)]

    assert [e["id"] for e in recent_runs(store, 1)] == [newest.id]
    assert [e["id"] for e in recent_runs(store, 2)] == [newest.id, older.id]
    assert {e["id"] for e in unverified_runs(store)} == {run.id for run in pending}


def test_group_fetch_at_limit_is_flagged_and_logged(caplog):
    store = SqlRunStore(_session(), fetch_limit=2)
    _player(store, "p1")
    _player(store, "p2")
    run = _submit(store, "p1", "00:09:00")
    _submit(store, "p2", "00:10:00")

    with caplog.at_level(logging.WARNING, logger="runboard.services"):
        result = refresh_group(store, group_key(run))

    assert result.truncated
    assert any("fetch limit" in record.getMessage() for record in caplog.records)


class _TracingStore(SqlRunStore):
    def __init__(self, db, events):
        super().__init__(db)
        self.events = events

    def get_player(self, uid):
        self.events.append(threading.current_thread().name)
        time.sleep(0.05)
        return super().get_player(uid)

    def commit(self):
        self.events.append(threading.current_thread().name)
        super().commit()


def test_concurrent_recomputes_of_one_player_do_not_interleave(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'runs.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=True, autocommit=False)
    seed = SqlRunStore(SessionLocal())
    _player(seed, "p1")
    _submit(seed, "p1", "00:09:00")
    _submit(seed, "p1", "00:20:00", category="low")
    seed.db.close()

    events = []
    results = []
    errors = []

    def work():
        db = SessionLocal()
        try:
            results.append(recompute_player(_TracingStore(db, events), "p1"))
        except Exception as e:
            errors.append(e)
        finally:
            db.close()

    threads = [threading.Thread(target=work, name=f"worker-{i}") for i in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    # Each worker's store calls form one unbroken block.
    blocks = [name for i, name in enumerate(events) if i == 0 or events[i - 1] != name]
    assert sorted(blocks) == ["worker-0", "worker-1"]
    assert [r.total_points for r in results] == [140, 140]
    check = SqlRunStore(SessionLocal())
    assert _total(check, "p1") == 140
    assert len(player_locks) == 0


def test_lock_registry_drops_entries_once_released():
    registry = PlayerLockRegistry()

    with registry.hold("p1"):
        with registry.hold("p1"):
            assert len(registry) == 1
        with registry.hold("p2"):
            assert len(registry) == 2

    assert len(registry) == 0


def test_category_threshold_change_repoints_runs():
    db = _session()
    store = SqlRunStore(db)
    db.add(Category(id="any", name="Any%"))
    db.commit()
    _player(store, "p1")
    run = _submit(store, "p1", "00:10:00")
    assert run.points == 70

    category, sweep = update_category(store, "any", {"bonus_threshold_seconds": 3600})

    assert category.bonus_threshold_seconds == 3600
    assert sweep is not None and sweep.done
    assert run.points == 95
    assert _total(store, "p1") == 95

    _, sweep = update_category(store, "any", {"name": "Any% (glitched)"})
    assert sweep is None


def test_points_config_change_repoints_runs():
    store = _store()
    _player(store, "p1")
    run = _submit(store, "p1", "00:10:00")

    config, sweep = update_points_config(store, {"base_multiplier": 20})

    assert config.base_multiplier == 20
    assert sweep.done
    assert run.points == 80
    assert _total(store, "p1") == 80
