from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Protocol, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from runboard.config import Config
from runboard.errors import NotFoundError, StoreWriteError
from runboard.models import (
    Category,
    Level,
    Platform,
    Player,
    PointsConfig,
    Run,
    default_points_config,
)

logger = logging.getLogger(__name__)

RUN_FILTER_FIELDS = (
    "leaderboard_type",
    "category",
    "platform",
    "run_type",
    "level",
    "verified",
    "is_obsolete",
    "player_id",
    "player2_id",
)


class RunStore(Protocol):
    """Everything the ranking engine needs from persistent storage."""

    def find_runs(self, limit: Optional[int] = None, **filters: Any) -> list[Run]: ...

    def find_unclaimed_by_name(self, username: str) -> list[Run]: ...

    def recent_runs(self, limit: int) -> list[Run]: ...

    def pending_runs(self) -> list[Run]: ...

    def get_run(self, run_id: str) -> Optional[Run]: ...

    def add_run(self, fields: dict[str, Any]) -> Run: ...

    def put_run(self, run_id: str, fields: dict[str, Any]) -> Run: ...

    def put_runs(self, updates: Sequence[tuple[str, dict[str, Any]]]) -> int: ...

    def delete_run(self, run_id: str) -> None: ...

    def iter_run_page(self, after_id: Optional[str], limit: int) -> list[Run]: ...

    def get_player(self, uid: str) -> Optional[Player]: ...

    def add_player(self, fields: dict[str, Any]) -> Player: ...

    def put_player(self, uid: str, fields: dict[str, Any]) -> Player: ...

    def list_players(self) -> list[Player]: ...

    def players_by_points(self, limit: int) -> list[Player]: ...

    def get_points_config(self) -> PointsConfig: ...

    def save_points_config(self, fields: dict[str, Any]) -> PointsConfig: ...

    def get_category(self, category_id: str) -> Optional[Category]: ...

    def get_platform(self, platform_id: str) -> Optional[Platform]: ...

    def list_categories(self) -> list[Category]: ...

    def put_category(self, category_id: str, fields: dict[str, Any]) -> Category: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class SqlRunStore:
    """RunStore backed by a SQLAlchemy session. The caller owns the session."""

    def __init__(self, db: Session, fetch_limit: int | None = None) -> None:
        self.db = db
        self.fetch_limit = fetch_limit or Config.GROUP_FETCH_LIMIT

    # Runs

    def find_runs(self, limit: Optional[int] = None, **filters: Any) -> list[Run]:
        """Runs matching every filter, in id order. Unbounded unless ``limit`` is given."""
        unknown = set(filters) - set(RUN_FILTER_FIELDS)
        if unknown:
            raise TypeError(f"Unsupported run filters: {sorted(unknown)}")
        query = select(Run)
        for name, value in filters.items():
            column = getattr(Run, name)
            query = query.where(column.is_(None) if value is None else column == value)
        query = query.order_by(Run.id.asc())
        if limit is not None:
            query = query.limit(limit)
        return list(self.db.scalars(query).all())

    def find_unclaimed_by_name(self, username: str) -> list[Run]:
        """
        Runs with an open slot recorded under ``username`` (case-insensitive).
        The speedrun.com name wins over the display-name snapshot when both exist.
        """
        name = (username or "").strip().lower()
        if not name:
            return []
        slot1 = and_(
            Run.player_id.is_(None),
            or_(
                func.lower(Run.src_player_name) == name,
                and_(Run.src_player_name.is_(None), func.lower(Run.player_name) == name),
            ),
        )
        slot2 = and_(
            Run.run_type == "co-op",
            Run.player2_id.is_(None),
            or_(
                func.lower(Run.src_player2_name) == name,
                and_(Run.src_player2_name.is_(None), func.lower(Run.player2_name) == name),
            ),
        )
        query = select(Run).where(or_(slot1, slot2)).order_by(Run.id.asc())
        return list(self.db.scalars(query).all())

    def recent_runs(self, limit: int) -> list[Run]:
        query = (
            select(Run)
            .where(Run.verified.is_(True), Run.is_obsolete.is_(False))
            .order_by(Run.date.desc(), Run.created_at.desc(), Run.id.asc())
            .limit(limit)
        )
        return list(self.db.scalars(query).all())

    def pending_runs(self) -> list[Run]:
        query = select(Run).where(Run.verified.is_(False)).order_by(Run.created_at.asc(), Run.id.asc())
        return list(self.db.scalars(query).all())

    def get_run(self, run_id: str) -> Optional[Run]:
        return self.db.get(Run, run_id)

    def add_run(self, fields: dict[str, Any]) -> Run:
        run = Run(**_known_columns(Run, fields))
        self.db.add(run)
        self._flush("add_run")
        return run

    def put_run(self, run_id: str, fields: dict[str, Any]) -> Run:
        run = self.get_run(run_id)
        if run is None:
            raise NotFoundError("Run", run_id)
        for name, value in _known_columns(Run, fields).items():
            if name != "id":
                setattr(run, name, value)
        self._flush("put_run")
        return run

    def put_runs(self, updates: Sequence[tuple[str, dict[str, Any]]]) -> int:
        """Apply one chunk of run updates atomically. Returns the number written."""
        try:
            with self.db.begin_nested():
                for run_id, fields in updates:
                    run = self.get_run(run_id)
                    if run is None:
                        raise NotFoundError("Run", run_id)
                    for name, value in _known_columns(Run, fields).items():
                        if name != "id":
                            setattr(run, name, value)
        except OperationalError:
            raise
        except (SQLAlchemyError, NotFoundError) as e:
            raise StoreWriteError("put_runs", str(e)) from e
        return len(updates)

    def delete_run(self, run_id: str) -> None:
        run = self.get_run(run_id)
        if run is None:
            raise NotFoundError("Run", run_id)
        self.db.delete(run)
        self._flush("delete_run")

    def iter_run_page(self, after_id: Optional[str], limit: int) -> list[Run]:
        query = select(Run)
        if after_id is not None:
            query = query.where(Run.id > after_id)
        return list(self.db.scalars(query.order_by(Run.id.asc()).limit(limit)).all())

    # Players

    def get_player(self, uid: str) -> Optional[Player]:
        return self.db.get(Player, uid)

    def add_player(self, fields: dict[str, Any]) -> Player:
        player = Player(**_known_columns(Player, fields))
        self.db.add(player)
        self._flush("add_player")
        return player

    def put_player(self, uid: str, fields: dict[str, Any]) -> Player:
        player = self.get_player(uid)
        if player is None:
            raise NotFoundError("Player", uid)
        for name, value in _known_columns(Player, fields).items():
            if name != "uid":
                setattr(player, name, value)
        self._flush("put_player")
        return player

    def list_players(self) -> list[Player]:
        return list(self.db.scalars(select(Player).order_by(Player.uid.asc())).all())

    def players_by_points(self, limit: int) -> list[Player]:
        return list(
            self.db.scalars(
                select(Player)
                .where(Player.total_points > 0)
                .order_by(Player.total_points.desc(), Player.display_name.asc())
                .limit(limit)
            ).all()
        )

    # Reference data

    def get_points_config(self) -> PointsConfig:
        config = self.db.get(PointsConfig, "default")
        return config if config is not None else default_points_config()

    def save_points_config(self, fields: dict[str, Any]) -> PointsConfig:
        config = self.db.get(PointsConfig, "default")
        if config is None:
            config = default_points_config()
            self.db.add(config)
        for name, value in _known_columns(PointsConfig, fields).items():
            if name != "id":
                setattr(config, name, value)
        self._flush("save_points_config")
        return config

    def get_category(self, category_id: str) -> Optional[Category]:
        return self.db.get(Category, category_id) if category_id else None

    def get_platform(self, platform_id: str) -> Optional[Platform]:
        return self.db.get(Platform, platform_id) if platform_id else None

    def list_categories(self) -> list[Category]:
        return list(self.db.scalars(select(Category).order_by(Category.order.asc(), Category.name.asc())).all())

    def list_platforms(self) -> list[Platform]:
        return list(self.db.scalars(select(Platform).order_by(Platform.order.asc(), Platform.name.asc())).all())

    def list_levels(self) -> list[Level]:
        return list(self.db.scalars(select(Level).order_by(Level.order.asc(), Level.name.asc())).all())

    def add_reference(self, model: Any, fields: dict[str, Any]) -> Any:
        obj = model(**_known_columns(model, fields))
        self.db.add(obj)
        self._flush("add_reference")
        return obj

    def put_category(self, category_id: str, fields: dict[str, Any]) -> Category:
        category = self.get_category(category_id)
        if category is None:
            raise NotFoundError("Category", category_id)
        for name, value in _known_columns(Category, fields).items():
            if name != "id":
                setattr(category, name, value)
        self._flush("put_category")
        return category

    # Transactions

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def _flush(self, operation: str) -> None:
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning("Store write rejected during %s: %s", operation, e)
            raise StoreWriteError(operation, str(e.orig)) from e


def _known_columns(model: Any, fields: dict[str, Any]) -> dict[str, Any]:
    columns = {attr.key for attr in model.__mapper__.column_attrs}
    return {k: v for k, v in fields.items() if k in columns}


def unique_runs(runs: Iterable[Run]) -> list[Run]:
    seen: dict[str, Run] = {}
    for run in runs:
        seen.setdefault(run.id, run)
    return list(seen.values())
