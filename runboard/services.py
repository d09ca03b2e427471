from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Sequence

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from runboard.config import Config
from runboard.errors import (
    AggregateResult,
    BatchResult,
    GroupRefreshResult,
    NotFoundError,
    RunboardError,
    StoreWriteError,
    SweepResult,
    TransitionResult,
    ValidationError,
)
from runboard.models import Category, Player, Run
from runboard.normalize import LEVEL_SCOPED_TYPES, normalize_run, parse_time_to_seconds, validate_run
from runboard.rules import (
    GroupKey,
    PointsRules,
    assign_group_ranks,
    calculate_points,
    claimed_players,
    group_key,
    legacy_threshold_for,
    reduce_best_times,
    run_sort_key,
)
from runboard.store import RunStore, unique_runs

logger = logging.getLogger(__name__)

# Derived or identity fields a caller may never set directly.
PROTECTED_RUN_FIELDS = ("id", "rank", "points", "verified", "verified_by", "is_obsolete", "created_at")
RUN_FIELDS = (
    "player_id",
    "player2_id",
    "player_name",
    "player2_name",
    "category",
    "platform",
    "level",
    "run_type",
    "leaderboard_type",
    "time",
    "date",
    "video_url",
    "comment",
    "verified",
    "is_obsolete",
    "imported_from_src",
    "src_run_id",
    "src_category_name",
    "src_platform_name",
    "src_level_name",
    "src_player_name",
    "src_player2_name",
)

ProgressCallback = Callable[[int, Optional[str]], None]


class PlayerLockRegistry:
    """One lock per player uid so aggregation for a player never interleaves."""

    def __init__(self) -> None:
        # uid -> [lock, holders + waiters]; an entry lives only while in use.
        self._locks: dict[str, list[Any]] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, uid: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(uid, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[uid]


player_locks = PlayerLockRegistry()


def _recoverable(e: Exception) -> bool:
    # An unreachable store is fatal for the whole operation.
    return not isinstance(e, OperationalError)


class PointsContext:
    """Points rules plus cached reference lookups for one operation."""

    def __init__(self, store: RunStore) -> None:
        self.store = store
        self.config = store.get_points_config()
        self.rules = PointsRules.from_config(self.config)
        self._categories: Dict[str, Optional[Category]] = {}
        self._platforms: Dict[str, Any] = {}

    def category(self, category_id: str) -> Optional[Category]:
        if category_id not in self._categories:
            self._categories[category_id] = self.store.get_category(category_id)
        return self._categories[category_id]

    def platform(self, platform_id: str) -> Any:
        if platform_id not in self._platforms:
            self._platforms[platform_id] = self.store.get_platform(platform_id)
        return self._platforms[platform_id]

    def category_name(self, run: Run) -> str:
        category = self.category(run.category)
        if category is not None:
            return category.name
        return run.src_category_name or run.category or "Unknown Category"

    def platform_name(self, run: Run) -> str:
        platform = self.platform(run.platform)
        if platform is not None:
            return platform.name
        return run.src_platform_name or run.platform or "Unknown Platform"

    def points_for(self, run: Run, rank: Optional[int]) -> int:
        category = self.category(run.category)
        return calculate_points(
            run.time,
            self.category_name(run),
            self.platform_name(run),
            category_id=run.category,
            platform_id=run.platform,
            rank=rank,
            run_type=run.run_type,
            config=self.rules,
            bonus_threshold_seconds=category.bonus_threshold_seconds if category else None,
        )


def run_state(run: Run) -> str:
    verified = "verified" if run.verified else "unverified"
    claimed = "claimed" if claimed_players(run) else "unclaimed"
    return f"{verified}+{claimed}"


def group_filter(key: GroupKey) -> dict[str, Any]:
    filters: dict[str, Any] = {
        "leaderboard_type": key.leaderboard_type,
        "category": key.category,
        "platform": key.platform,
        "run_type": key.run_type,
    }
    if key.leaderboard_type in LEVEL_SCOPED_TYPES:
        filters["level"] = key.level or None
    return filters


def fetch_group(store: RunStore, key: GroupKey, include: Sequence[Run] = ()) -> tuple[list[Run], bool]:
    """
    Verified siblings of a group, with just-written runs merged in by id so the
    caller always ranks its own latest state.
    """
    limit = getattr(store, "fetch_limit", Config.GROUP_FETCH_LIMIT)
    siblings = store.find_runs(limit=limit, verified=True, **group_filter(key))
    truncated = len(siblings) >= limit
    if truncated:
        logger.warning("Group %s hit the fetch limit of %d runs; ranks may be approximate", key, limit)

    by_id = {run.id: run for run in siblings}
    for run in include:
        if group_key(run) == key:
            by_id[run.id] = run
        else:
            by_id.pop(run.id, None)
    return list(by_id.values()), truncated


def persist_run_updates(
    store: RunStore,
    updates: Sequence[tuple[str, dict[str, Any]]],
    chunk_size: Optional[int] = None,
) -> BatchResult:
    """
    Write updates in chunks, committing each chunk. A failed chunk is reported
    and skipped; chunks already committed stay committed.
    """
    chunk_size = chunk_size or Config.BATCH_SIZE
    result = BatchResult()
    for start in range(0, len(updates), chunk_size):
        chunk = updates[start : start + chunk_size]
        try:
            result.updated += store.put_runs(chunk)
            store.commit()
        except StoreWriteError as e:
            ids = [run_id for run_id, _ in chunk]
            result.failed.extend(ids)
            result.errors.append(str(e))
            logger.warning("Failed to persist %d run updates: %s", len(ids), e)
    return result


def refresh_group(
    store: RunStore,
    key: GroupKey,
    include: Sequence[Run] = (),
    ctx: Optional[PointsContext] = None,
) -> GroupRefreshResult:
    """Re-rank one comparison group and persist every rank/points change."""
    ctx = ctx or PointsContext(store)
    runs, truncated = fetch_group(store, key, include)
    ranks = assign_group_ranks(runs)

    result = GroupRefreshResult(truncated=truncated)
    updates: list[tuple[str, dict[str, Any]]] = []
    for run in runs:
        rank = ranks.get(run.id)
        points = ctx.points_for(run, rank)
        result.ranks[run.id] = rank
        result.points[run.id] = points
        if run.rank != rank or run.points != points:
            updates.append((run.id, {"rank": rank, "points": points}))
            result.changed_players.update(claimed_players(run))

    result.batch = persist_run_updates(store, updates)
    return result


def eligible_runs(store: RunStore, uid: str) -> list[Run]:
    """Verified runs credited to a player: slot 1 of any run, slot 2 of co-op runs."""
    own = store.find_runs(player_id=uid, verified=True)
    partnered = store.find_runs(player2_id=uid, verified=True, run_type="co-op")
    return unique_runs(own + partnered)


def recompute_player(
    store: RunStore,
    uid: str,
    include: Sequence[Run] = (),
    ctx: Optional[PointsContext] = None,
) -> AggregateResult:
    """
    Rebuild a player's total points and run count from their eligible runs.

    Every group the player competes in is re-ranked first. A group that fails
    is skipped and reported; its runs keep their previously cached points in
    the total.
    """
    result = AggregateResult(player_id=uid)
    with player_locks.hold(uid):
        player = store.get_player(uid)
        if player is None:
            result.ok = False
            result.errors.append(f"Player {uid!r} not found")
            logger.warning("Skipping recompute for unknown player %s", uid)
            return result

        ctx = ctx or PointsContext(store)
        runs = {run.id: run for run in eligible_runs(store, uid)}
        for run in include:
            if run.verified and uid in claimed_players(run):
                runs[run.id] = run
            else:
                runs.pop(run.id, None)

        groups: dict[GroupKey, list[Run]] = {}
        for run in runs.values():
            groups.setdefault(group_key(run), []).append(run)

        total_points = 0
        for key, group_runs in groups.items():
            try:
                refreshed = refresh_group(store, key, include=include, ctx=ctx)
            except (RunboardError, SQLAlchemyError) as e:
                if not _recoverable(e):
                    raise
                store.rollback()
                logger.error("Failed to refresh group %s for player %s: %s", key, uid, e)
                result.errors.append(f"Group {key.category}/{key.platform}/{key.run_type}: {e}")
                result.failed.extend(run.id for run in group_runs)
                total_points += sum(run.points or 0 for run in group_runs)
                continue

            failed = set(refreshed.batch.failed)
            result.errors.extend(refreshed.batch.errors)
            for run in group_runs:
                if run.id in failed:
                    result.failed.append(run.id)
                    total_points += run.points or 0
                else:
                    total_points += refreshed.points.get(run.id, run.points or 0)
            result.affected_players.update(refreshed.changed_players - {uid})

        result.total_points = total_points
        result.total_runs = len(runs)
        result.ok = not result.failed and not result.errors
        store.put_player(uid, {"total_points": total_points, "total_runs": len(runs)})
        store.commit()

    logger.info(
        "Recomputed player %s: %d points over %d runs (%d failed)",
        uid,
        result.total_points,
        result.total_runs,
        len(result.failed),
    )
    return result


def _propagate(
    store: RunStore,
    result: TransitionResult,
    keys: Iterable[GroupKey],
    include: Sequence[Run] = (),
    players: Iterable[str] = (),
) -> TransitionResult:
    """Refresh the touched groups, then re-aggregate every affected player once."""
    ctx = PointsContext(store)
    to_recompute: list[str] = [p for p in players if p]
    for key in dict.fromkeys(keys):
        try:
            refreshed = refresh_group(store, key, include=include, ctx=ctx)
        except (RunboardError, SQLAlchemyError) as e:
            if not _recoverable(e):
                raise
            store.rollback()
            logger.error("Failed to refresh group %s after %s: %s", key, result.state, e)
            result.errors.append(f"Group refresh failed: {e}")
            continue
        result.errors.extend(refreshed.batch.errors)
        to_recompute.extend(refreshed.changed_players)

    done: set[str] = set()
    pending = list(dict.fromkeys(to_recompute))
    # One cascade round: other competitors whose rank moved because of this run.
    for _ in range(2):
        cascade: list[str] = []
        for uid in pending:
            if uid in done:
                continue
            done.add(uid)
            aggregate = recompute_player(store, uid, include=include, ctx=ctx)
            result.recomputed.append(aggregate)
            result.errors.extend(f"Player {uid}: {err}" for err in aggregate.errors)
            cascade.extend(aggregate.affected_players)
        pending = [uid for uid in dict.fromkeys(cascade) if uid not in done]
        if not pending:
            break

    result.ok = not result.errors
    return result


def get_run_or_404(store: RunStore, run_id: str) -> Run:
    run = store.get_run(run_id)
    if run is None:
        raise NotFoundError("Run", run_id)
    return run


def get_player_or_404(store: RunStore, uid: str) -> Player:
    player = store.get_player(uid)
    if player is None:
        raise NotFoundError("Player", uid)
    return player


def verify_run(store: RunStore, run_id: str, verifier: Optional[str] = None) -> TransitionResult:
    run = get_run_or_404(store, run_id)
    store.put_run(run_id, {"verified": True, "verified_by": verifier})
    store.commit()
    logger.info("Run %s verified by %s", run_id, verifier or "unknown")
    result = TransitionResult(run_id=run_id, state=run_state(run))
    return _propagate(store, result, [group_key(run)], include=[run], players=claimed_players(run))


def unverify_run(store: RunStore, run_id: str) -> TransitionResult:
    run = get_run_or_404(store, run_id)
    store.put_run(run_id, {"verified": False, "verified_by": None})
    store.commit()
    logger.info("Run %s unverified", run_id)
    result = TransitionResult(run_id=run_id, state=run_state(run))
    return _propagate(store, result, [group_key(run)], include=[run], players=claimed_players(run))


def set_run_obsolete(store: RunStore, run_id: str, obsolete: bool) -> TransitionResult:
    run = get_run_or_404(store, run_id)
    store.put_run(run_id, {"is_obsolete": bool(obsolete)})
    store.commit()
    logger.info("Run %s obsolete=%s", run_id, bool(obsolete))
    result = TransitionResult(run_id=run_id, state=run_state(run))
    return _propagate(store, result, [group_key(run)], include=[run], players=claimed_players(run))


def _same_identity(a: Optional[str], b: Optional[str]) -> bool:
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    return bool(a) and a == b


def claim_run(store: RunStore, run_id: str, uid: str, force: bool = False) -> TransitionResult:
    """
    Attach a run to a player whose registered speedrun.com username matches the
    name recorded on the run. ``force`` lets an admin reassign regardless of
    identity or existing owner.
    """
    run = get_run_or_404(store, run_id)
    player = get_player_or_404(store, uid)
    result = TransitionResult(run_id=run_id, state=run_state(run))

    identity = player.src_username
    slot1_match = _same_identity(run.src_player_name or run.player_name, identity)
    slot2_match = run.run_type == "co-op" and _same_identity(
        run.src_player2_name or run.player2_name, identity
    )

    if uid in (run.player_id, run.player2_id if run.run_type == "co-op" else None):
        return result

    if slot2_match and not slot1_match:
        slot, previous = "player2_id", run.player2_id
    elif slot1_match or force:
        slot, previous = "player_id", run.player_id
    else:
        result.ok = False
        result.errors.append(
            f"Run {run_id} was recorded for a different runner than {player.display_name!r}"
        )
        return result

    if previous and previous != uid and not force:
        result.ok = False
        result.errors.append(f"Run {run_id} is already claimed by another player")
        return result

    store.put_run(run_id, {slot: uid})
    store.commit()
    logger.info("Run %s claimed by %s (%s, previously %s)", run_id, uid, slot, previous or "unclaimed")
    result.state = run_state(run)
    return _propagate(store, result, [group_key(run)], include=[run], players=[uid, previous or ""])


def _prepare_record(raw: dict[str, Any]) -> dict[str, Any]:
    errors = validate_run(raw)
    if errors:
        raise ValidationError(errors)
    record = normalize_run(raw)
    return {k: v for k, v in record.items() if k in RUN_FIELDS}


def _require_players(store: RunStore, record: dict[str, Any]) -> None:
    for field_name in ("player_id", "player2_id"):
        uid = record.get(field_name)
        if uid and store.get_player(uid) is None:
            raise NotFoundError("Player", uid)


def create_run(store: RunStore, raw: dict[str, Any]) -> tuple[Run, TransitionResult]:
    """Normalize, validate and store a new run, then rank it into its group."""
    record = _prepare_record(raw)
    _require_players(store, record)
    run = store.add_run(record)
    store.commit()
    logger.info("Created run %s (%s, %s)", run.id, run.leaderboard_type, run.time)
    result = TransitionResult(run_id=run.id, state=run_state(run))
    return run, _propagate(store, result, [group_key(run)], include=[run], players=claimed_players(run))


def run_fields(run: Run) -> dict[str, Any]:
    return {name: getattr(run, name) for name in RUN_FIELDS}


def update_run(store: RunStore, run_id: str, fields: dict[str, Any]) -> tuple[Run, TransitionResult]:
    """
    Edit a run. Ranks are refreshed in both the group it left and the group it
    joined, and every player on either side is re-aggregated.
    """
    run = get_run_or_404(store, run_id)
    old_key = group_key(run)
    old_players = claimed_players(run)

    editable = {k: v for k, v in fields.items() if k not in PROTECTED_RUN_FIELDS}
    candidate = {**run_fields(run), **editable}
    record = _prepare_record(candidate)
    _require_players(store, record)
    changes = {
        k: v for k, v in record.items() if k not in PROTECTED_RUN_FIELDS and getattr(run, k) != v
    }

    run = store.put_run(run_id, changes)
    store.commit()
    logger.info("Updated run %s: %s", run_id, sorted(changes))
    result = TransitionResult(run_id=run_id, state=run_state(run))
    return run, _propagate(
        store,
        result,
        [old_key, group_key(run)],
        include=[run],
        players=old_players + claimed_players(run),
    )


def delete_run(store: RunStore, run_id: str) -> TransitionResult:
    run = get_run_or_404(store, run_id)
    key = group_key(run)
    players = claimed_players(run)
    state = run_state(run)
    store.delete_run(run_id)
    store.commit()
    logger.info("Deleted run %s", run_id)
    result = TransitionResult(run_id=run_id, state=state)
    return _propagate(store, result, [key], players=players)


def list_unclaimed_runs(store: RunStore, username: str) -> list[Run]:
    """Runs recorded under ``username`` that no account has claimed yet."""
    return sorted(store.find_unclaimed_by_name(username), key=run_sort_key)


def auto_claim_runs(store: RunStore, uid: str) -> BatchResult:
    """Claim every unclaimed run recorded under the player's speedrun.com username."""
    player = get_player_or_404(store, uid)
    result = BatchResult()
    if not (player.src_username or "").strip():
        result.errors.append(f"Player {uid!r} has no registered speedrun.com username")
        return result

    claimed: list[Run] = []
    for run in list_unclaimed_runs(store, player.src_username):
        slot = "player_id"
        if run.player_id or not _same_identity(run.src_player_name or run.player_name, player.src_username):
            slot = "player2_id"
        try:
            store.put_run(run.id, {slot: uid})
        except RunboardError as e:
            result.failed.append(run.id)
            result.errors.append(str(e))
            continue
        claimed.append(run)
    store.commit()
    result.updated = len(claimed)
    logger.info("Auto-claimed %d runs for %s", len(claimed), uid)

    if claimed:
        transition = _propagate(
            store,
            TransitionResult(run_id="", state="autoclaim"),
            [group_key(run) for run in claimed],
            include=claimed,
            players=[uid],
        )
        result.errors.extend(transition.errors)
    return result


def recalculate_all(
    store: RunStore,
    start_after: Optional[str] = None,
    page_size: Optional[int] = None,
    progress: Optional[ProgressCallback] = None,
    max_pages: Optional[int] = None,
    recompute_players: bool = True,
) -> SweepResult:
    """
    Re-rank and re-point every run, then rebuild every player's totals.

    Runs are walked in id order one page at a time. ``cursor`` in the result
    is the last id handled; pass it back as ``start_after`` to resume a sweep
    that stopped early (``max_pages``) or crashed.
    """
    page_size = page_size or Config.BATCH_SIZE
    result = SweepResult(cursor=start_after)
    ctx = PointsContext(store)
    seen: set[GroupKey] = set()
    pages = 0

    while True:
        page = store.iter_run_page(result.cursor, page_size)
        if not page:
            result.done = True
            break
        for run in page:
            key = group_key(run)
            if key in seen:
                continue
            seen.add(key)
            try:
                refreshed = refresh_group(store, key, ctx=ctx)
            except (RunboardError, SQLAlchemyError) as e:
                if not _recoverable(e):
                    raise
                store.rollback()
                result.batch.errors.append(f"Group {key}: {e}")
                continue
            result.groups_refreshed += 1
            result.batch.merge(refreshed.batch)
        result.processed_runs += len(page)
        result.cursor = page[-1].id
        pages += 1
        if progress is not None:
            progress(result.processed_runs, result.cursor)
        if len(page) < page_size:
            result.done = True
            break
        if max_pages is not None and pages >= max_pages:
            break

    if result.done and recompute_players:
        for player in store.list_players():
            aggregate = recompute_player(store, player.uid, ctx=ctx)
            result.players_recomputed += 1
            result.batch.errors.extend(f"Player {player.uid}: {err}" for err in aggregate.errors)

    logger.info(
        "Recalculation sweep: %d runs, %d groups, %d players, %d failed updates%s",
        result.processed_runs,
        result.groups_refreshed,
        result.players_recomputed,
        len(result.batch.failed),
        "" if result.done else f", paused at {result.cursor}",
    )
    return result


def migrate_category_thresholds(store: RunStore) -> BatchResult:
    """
    One-time copy of the legacy Any% / Nocuts Noships time thresholds onto the
    categories whose names follow that convention.
    """
    config = store.get_points_config()
    result = BatchResult()
    for category in store.list_categories():
        if category.bonus_threshold_seconds is not None:
            continue
        threshold = legacy_threshold_for(category.name, config)
        if threshold is None:
            continue
        try:
            store.put_category(category.id, {"bonus_threshold_seconds": threshold})
        except RunboardError as e:
            result.failed.append(category.id)
            result.errors.append(str(e))
            continue
        result.updated += 1
    store.commit()
    logger.info("Migrated time-bonus thresholds for %d categories", result.updated)
    if result.updated:
        sweep = recalculate_all(store)
        result.failed.extend(sweep.batch.failed)
        result.errors.extend(sweep.batch.errors)
    return result


def update_category(store: RunStore, category_id: str, fields: dict[str, Any]) -> tuple[Category, Optional[SweepResult]]:
    """Edit a category. A threshold change re-points every run before returning."""
    category = store.get_category(category_id)
    if category is None:
        raise NotFoundError("Category", category_id)
    previous = category.bonus_threshold_seconds
    category = store.put_category(category_id, fields)
    store.commit()
    if category.bonus_threshold_seconds == previous:
        return category, None
    logger.info("Category %s threshold %s -> %s", category_id, previous, category.bonus_threshold_seconds)
    return category, recalculate_all(store)


def update_points_config(store: RunStore, fields: dict[str, Any]) -> tuple[Any, SweepResult]:
    """Save points settings and re-point every run under them."""
    config = store.save_points_config(fields)
    store.commit()
    logger.info("Points config updated: %s", sorted(fields))
    return config, recalculate_all(store)


# Read models


class _NameResolver:
    def __init__(self, store: RunStore) -> None:
        self.store = store
        self._players: Dict[str, Optional[Player]] = {}

    def player(self, uid: Optional[str]) -> Optional[Player]:
        if not uid:
            return None
        if uid not in self._players:
            self._players[uid] = self.store.get_player(uid)
        return self._players[uid]

    def name(self, uid: Optional[str], snapshot: Optional[str]) -> tuple[Optional[str], Optional[str]]:
        player = self.player(uid)
        if player is not None:
            return player.display_name, player.name_color
        return snapshot, None


def run_entry(run: Run, ctx: PointsContext, names: _NameResolver, position: Optional[int] = None) -> dict[str, Any]:
    player_name, name_color = names.name(run.player_id, run.player_name)
    player2_name, player2_color = (None, None)
    if run.run_type == "co-op":
        player2_name, player2_color = names.name(run.player2_id, run.player2_name)
    return {
        "id": run.id,
        "position": position,
        "rank": run.rank,
        "points": run.points,
        "time": run.time,
        "seconds": parse_time_to_seconds(run.time),
        "date": run.date,
        "player_id": run.player_id,
        "player_name": player_name,
        "name_color": name_color,
        "player2_id": run.player2_id,
        "player2_name": player2_name,
        "player2_color": player2_color,
        "category": run.category,
        "category_name": ctx.category_name(run),
        "platform": run.platform,
        "platform_name": ctx.platform_name(run),
        "level": run.level,
        "run_type": run.run_type,
        "leaderboard_type": run.leaderboard_type,
        "verified": run.verified,
        "is_obsolete": run.is_obsolete,
        "video_url": run.video_url,
    }


def group_leaderboard(store: RunStore, key: GroupKey, include_obsolete: bool = False) -> list[dict[str, Any]]:
    """
    Public leaderboard for one group: each competitor's best run in time order,
    followed by superseded runs when ``include_obsolete`` is set.
    """
    ctx = PointsContext(store)
    names = _NameResolver(store)
    runs, _ = fetch_group(store, key)
    best = sorted(reduce_best_times(runs), key=run_sort_key)
    entries = [run_entry(run, ctx, names, position) for position, run in enumerate(best, start=1)]
    if include_obsolete:
        best_ids = {run.id for run in best}
        rest = sorted((run for run in runs if run.id not in best_ids), key=run_sort_key)
        entries.extend(run_entry(run, ctx, names) for run in rest)
    return entries


def players_by_points(store: RunStore, limit: int = 100) -> list[dict[str, Any]]:
    rows = []
    for position, player in enumerate(store.players_by_points(limit), start=1):
        rows.append(
            {
                "position": position,
                "uid": player.uid,
                "display_name": player.display_name,
                "name_color": player.name_color,
                "total_points": player.total_points,
                "total_runs": player.total_runs,
            }
        )
    return rows


def recent_runs(store: RunStore, limit: int = 10) -> list[dict[str, Any]]:
    ctx = PointsContext(store)
    names = _NameResolver(store)
    return [run_entry(run, ctx, names) for run in store.recent_runs(limit)]


def player_runs(store: RunStore, uid: str) -> list[dict[str, Any]]:
    get_player_or_404(store, uid)
    ctx = PointsContext(store)
    names = _NameResolver(store)
    runs = sorted(eligible_runs(store, uid), key=lambda r: (r.date or "", r.id), reverse=True)
    return [run_entry(run, ctx, names) for run in runs]


def unverified_runs(store: RunStore) -> list[dict[str, Any]]:
    ctx = PointsContext(store)
    names = _NameResolver(store)
    return [run_entry(run, ctx, names) for run in store.pending_runs()]
