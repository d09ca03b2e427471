from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

from runboard.normalize import LEVEL_SCOPED_TYPES, parse_time_to_seconds


RANKED_PLACES = 3


class GroupKey(NamedTuple):
    leaderboard_type: str
    level: Optional[str]
    category: str
    platform: str
    run_type: str


@dataclass(frozen=True)
class Registered:
    player_id: str


@dataclass(frozen=True)
class Unregistered:
    display_name: str


CompetitorRef = Union[Registered, Unregistered]


@dataclass(frozen=True)
class PointsRules:
    enabled: bool = True
    base_multiplier: int = 10
    rank1_bonus: int = 60
    rank2_bonus: int = 40
    rank3_bonus: int = 20
    time_bonus: int = 25
    eligible_platforms: Tuple[str, ...] = ()
    eligible_categories: Tuple[str, ...] = ()

    @classmethod
    def from_config(cls, config: Any) -> "PointsRules":
        if config is None:
            return cls()
        if isinstance(config, cls):
            return config
        defaults = cls()
        return cls(
            enabled=bool(_attr(config, "enabled", True)),
            base_multiplier=int(_attr(config, "base_multiplier", defaults.base_multiplier)),
            rank1_bonus=int(_attr(config, "rank1_bonus", defaults.rank1_bonus)),
            rank2_bonus=int(_attr(config, "rank2_bonus", defaults.rank2_bonus)),
            rank3_bonus=int(_attr(config, "rank3_bonus", defaults.rank3_bonus)),
            time_bonus=int(_attr(config, "time_bonus", defaults.time_bonus)),
            eligible_platforms=split_names(_attr(config, "eligible_platforms", "")),
            eligible_categories=split_names(_attr(config, "eligible_categories", "")),
        )


def _attr(obj: Any, name: str, default: Any) -> Any:
    value = getattr(obj, name, None)
    return default if value is None else value


def split_names(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(v.strip().lower() for v in value if v and v.strip())


def group_key(run: Any) -> GroupKey:
    """
    Comparison group of a run. Level only participates for level-scoped
    leaderboard types; a missing level there forms its own ("") group.
    """
    leaderboard_type = run.leaderboard_type or "regular"
    level: Optional[str] = None
    if leaderboard_type in LEVEL_SCOPED_TYPES:
        level = (run.level or "").strip()
    return GroupKey(
        leaderboard_type=leaderboard_type,
        level=level,
        category=(run.category or "").strip(),
        platform=(run.platform or "").strip(),
        run_type=run.run_type or "solo",
    )


def competitor_ref(player_id: Optional[str], display_name: Optional[str]) -> CompetitorRef:
    if player_id and player_id.strip():
        return Registered(player_id.strip())
    return Unregistered((display_name or "").strip().lower())


def _ref_order(ref: CompetitorRef) -> Tuple[int, str]:
    if isinstance(ref, Registered):
        return (0, ref.player_id)
    return (1, ref.display_name)


def competitor_key(run: Any) -> Tuple[CompetitorRef, ...]:
    """
    Identity of whoever competed in the run. Co-op pairs are order-independent.
    """
    first = competitor_ref(run.player_id, run.player_name)
    if run.run_type != "co-op":
        return (first,)
    second = competitor_ref(run.player2_id, run.player2_name)
    return tuple(sorted((first, second), key=_ref_order))


def claimed_players(run: Any) -> List[str]:
    """Registered player ids credited with the run (slot 2 only counts for co-op)."""
    ids: List[str] = []
    if run.player_id:
        ids.append(run.player_id)
    if run.run_type == "co-op" and run.player2_id and run.player2_id not in ids:
        ids.append(run.player2_id)
    return ids


def run_seconds(run: Any) -> int:
    return parse_time_to_seconds(run.time)


def run_sort_key(run: Any) -> Tuple[int, str, str]:
    # Equal times: earlier date first, then id.
    return (run_seconds(run), run.date or "", run.id or "")


def is_rankable(run: Any) -> bool:
    return bool(run.verified) and not run.is_obsolete and run_seconds(run) > 0


def reduce_best_times(runs: Iterable[Any]) -> List[Any]:
    """
    Collapse a group to one run per competitor (or co-op pair), keeping the fastest.
    Unverified, obsolete and zero-time runs never take part.
    """
    best: Dict[Tuple[CompetitorRef, ...], Any] = {}
    for run in runs:
        if not is_rankable(run):
            continue
        key = competitor_key(run)
        current = best.get(key)
        if current is None or run_sort_key(run) < run_sort_key(current):
            best[key] = run
    return list(best.values())


def rank_runs(reduced: Sequence[Any]) -> Dict[str, Optional[int]]:
    """
    1-based positions by time. Only places 1-3 are kept, everyone else maps to None.
    """
    ordered = sorted(reduced, key=run_sort_key)
    return {
        run.id: (position if position <= RANKED_PLACES else None)
        for position, run in enumerate(ordered, start=1)
    }


def assign_group_ranks(runs: Sequence[Any]) -> Dict[str, Optional[int]]:
    """Rank for every run in the group, None for runs that were reduced away."""
    ranks: Dict[str, Optional[int]] = {run.id: None for run in runs}
    ranks.update(rank_runs(reduce_best_times(runs)))
    return ranks


def rank_bonus(rank: Optional[int], rules: PointsRules) -> int:
    if rank == 1:
        return rules.rank1_bonus
    if rank == 2:
        return rules.rank2_bonus
    if rank == 3:
        return rules.rank3_bonus
    return 0


def _is_eligible(allowed: Tuple[str, ...], *candidates: Optional[str]) -> bool:
    if not allowed:
        return True
    names = {c.strip().lower() for c in candidates if c and c.strip()}
    return bool(names.intersection(allowed))


def calculate_points(
    time: str,
    category_name: Optional[str],
    platform_name: Optional[str] = None,
    category_id: Optional[str] = None,
    platform_id: Optional[str] = None,
    rank: Optional[int] = None,
    run_type: Optional[str] = "solo",
    config: Any = None,
    bonus_threshold_seconds: Optional[int] = None,
) -> int:
    """
    Points for a single run.

    The full solo award is base + time bonus (at or under the category's
    threshold) + rank bonus for places 1-3. Co-op runs award half of that to
    each competitor, rounded down.
    """
    rules = PointsRules.from_config(config)
    if not rules.enabled:
        return 0

    seconds = parse_time_to_seconds(time)
    if seconds <= 0:
        return 0

    if not _is_eligible(rules.eligible_platforms, platform_id, platform_name):
        return 0
    if not _is_eligible(rules.eligible_categories, category_id, category_name):
        return 0

    award = rules.base_multiplier
    if bonus_threshold_seconds is not None and bonus_threshold_seconds > 0 and seconds <= bonus_threshold_seconds:
        award += rules.time_bonus
    award += rank_bonus(rank, rules)

    if run_type == "co-op":
        award //= 2
    return max(int(award), 0)


def legacy_threshold_for(category_name: Optional[str], config: Any) -> Optional[int]:
    """
    Threshold implied by the historical category naming convention.
    Only the one-off category migration should call this.
    """
    name = (category_name or "").strip().lower()
    compact = name.replace(" ", "").replace("/", "").replace("-", "")
    if "nocuts" in compact and "noships" in compact:
        return int(_attr(config, "nocuts_noships_threshold", 1740))
    if "any%" in name:
        return int(_attr(config, "any_percent_threshold", 3300))
    return None
