from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from runboard.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def today() -> str:
    return date.today().isoformat()


class Run(Base):
    __tablename__ = "runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    player_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    player2_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    player_name: Mapped[str] = mapped_column(String(128), nullable=False, default="Unknown")
    player2_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    category: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    platform: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    level: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    run_type: Mapped[str] = mapped_column(String(16), nullable=False, default="solo")  # solo / co-op
    leaderboard_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default="regular"
    )  # regular, individual-level, community-golds

    time: Mapped[str] = mapped_column(String(16), nullable=False, default="00:00:00")
    date: Mapped[str] = mapped_column(String(10), nullable=False, default=today)
    video_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    verified_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    is_obsolete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 1-3 or NULL
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    imported_from_src: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    src_run_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    src_category_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    src_platform_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    src_level_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    src_player_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    src_player2_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Player(Base):
    __tablename__ = "players"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name_color: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    src_username: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    join_date: Mapped[str] = mapped_column(String(10), nullable=False, default=today)


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    order: Mapped[int] = mapped_column("sort_order", Integer, default=0, nullable=False)
    leaderboard_type: Mapped[str] = mapped_column(String(32), nullable=False, default="regular")
    # Runs at or under this many seconds earn the time bonus. NULL = no bonus.
    bonus_threshold_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class Platform(Base):
    __tablename__ = "platforms"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    order: Mapped[int] = mapped_column("sort_order", Integer, default=0, nullable=False)


class Level(Base):
    __tablename__ = "levels"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    order: Mapped[int] = mapped_column("sort_order", Integer, default=0, nullable=False)


class PointsConfig(Base):
    __tablename__ = "points_config"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default="default")
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    base_multiplier: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    rank1_bonus: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    rank2_bonus: Mapped[int] = mapped_column(Integer, default=40, nullable=False)
    rank3_bonus: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    time_bonus: Mapped[int] = mapped_column(Integer, default=25, nullable=False)
    # Legacy thresholds, only read by the category threshold migration.
    any_percent_threshold: Mapped[int] = mapped_column(Integer, default=3300, nullable=False)
    nocuts_noships_threshold: Mapped[int] = mapped_column(Integer, default=1740, nullable=False)
    eligible_platforms: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    eligible_categories: Mapped[str] = mapped_column(String(512), default="", nullable=False)


def default_points_config() -> PointsConfig:
    """Transient config with every column default filled in."""
    return PointsConfig(
        id="default",
        enabled=True,
        base_multiplier=10,
        rank1_bonus=60,
        rank2_bonus=40,
        rank3_bonus=20,
        time_bonus=25,
        any_percent_threshold=3300,
        nocuts_noships_threshold=1740,
        eligible_platforms="",
        eligible_categories="",
    )
