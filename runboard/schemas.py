from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RunCreate(BaseModel):
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    player2_id: Optional[str] = None
    player2_name: Optional[str] = None
    category: str = ""
    platform: str = ""
    level: Optional[str] = None
    run_type: str = "solo"
    leaderboard_type: str = "regular"
    time: Optional[str] = None
    date: Optional[str] = None
    video_url: Optional[str] = Field(default=None, max_length=512)
    comment: Optional[str] = None
    verified: bool = False
    imported_from_src: bool = False
    src_run_id: Optional[str] = None
    src_category_name: Optional[str] = None
    src_platform_name: Optional[str] = None
    src_level_name: Optional[str] = None
    src_player_name: Optional[str] = None
    src_player2_name: Optional[str] = None


class RunUpdate(BaseModel):
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    player2_id: Optional[str] = None
    player2_name: Optional[str] = None
    category: Optional[str] = None
    platform: Optional[str] = None
    level: Optional[str] = None
    run_type: Optional[str] = None
    leaderboard_type: Optional[str] = None
    time: Optional[str] = None
    date: Optional[str] = None
    video_url: Optional[str] = Field(default=None, max_length=512)
    comment: Optional[str] = None


class VerifyRequest(BaseModel):
    verifier: Optional[str] = Field(default=None, max_length=128)


class ClaimRequest(BaseModel):
    player_id: str = Field(min_length=1, max_length=128)
    force: bool = False


class ObsoleteRequest(BaseModel):
    is_obsolete: bool


class PlayerCreate(BaseModel):
    uid: str = Field(min_length=1, max_length=128)
    display_name: str = Field(min_length=1, max_length=128)
    name_color: Optional[str] = Field(default=None, max_length=16)
    src_username: Optional[str] = Field(default=None, max_length=128)
    is_admin: bool = False


class PlayerUpdate(BaseModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    name_color: Optional[str] = Field(default=None, max_length=16)
    src_username: Optional[str] = Field(default=None, max_length=128)


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    order: int = 0
    leaderboard_type: str = "regular"
    bonus_threshold_seconds: Optional[int] = Field(default=None, ge=1)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    order: Optional[int] = None
    bonus_threshold_seconds: Optional[int] = Field(default=None, ge=1)


class ReferenceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    order: int = 0


class PointsConfigUpdate(BaseModel):
    enabled: Optional[bool] = None
    base_multiplier: Optional[int] = Field(default=None, ge=0)
    rank1_bonus: Optional[int] = Field(default=None, ge=0)
    rank2_bonus: Optional[int] = Field(default=None, ge=0)
    rank3_bonus: Optional[int] = Field(default=None, ge=0)
    time_bonus: Optional[int] = Field(default=None, ge=0)
    any_percent_threshold: Optional[int] = Field(default=None, ge=1)
    nocuts_noships_threshold: Optional[int] = Field(default=None, ge=1)
    eligible_platforms: Optional[list[str]] = None
    eligible_categories: Optional[list[str]] = None


class RecalculateRequest(BaseModel):
    start_after: Optional[str] = None
    page_size: Optional[int] = Field(default=None, ge=1, le=5000)
    max_pages: Optional[int] = Field(default=None, ge=1)


class RunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    player_id: Optional[str] = None
    player_name: str
    player2_id: Optional[str] = None
    player2_name: Optional[str] = None
    category: str
    platform: str
    level: Optional[str] = None
    run_type: str
    leaderboard_type: str
    time: str
    date: str
    video_url: Optional[str] = None
    comment: Optional[str] = None
    verified: bool
    verified_by: Optional[str] = None
    is_obsolete: bool
    rank: Optional[int] = None
    points: int
    imported_from_src: bool
    src_run_id: Optional[str] = None
    src_player_name: Optional[str] = None
    src_player2_name: Optional[str] = None
    created_at: datetime


class PlayerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    uid: str
    display_name: str
    name_color: Optional[str] = None
    src_username: Optional[str] = None
    is_admin: bool
    total_points: int
    total_runs: int
    join_date: str


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    order: int
    leaderboard_type: str
    bonus_threshold_seconds: Optional[int] = None


class ReferenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    order: int


class PointsConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enabled: bool
    base_multiplier: int
    rank1_bonus: int
    rank2_bonus: int
    rank3_bonus: int
    time_bonus: int
    any_percent_threshold: int
    nocuts_noships_threshold: int
    eligible_platforms: str
    eligible_categories: str
