from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from runboard.config import Config
from runboard.database import Base, engine, get_db
from runboard.errors import (
    AggregateResult,
    BatchResult,
    NotFoundError,
    RunboardError,
    SweepResult,
    TransitionResult,
    ValidationError,
)
from runboard.logger import setup_logging
from runboard.models import Category, Level, Platform
from runboard.normalize import LEADERBOARD_TYPES, normalize_leaderboard_type, normalize_run_type
from runboard.rules import GroupKey
from runboard.schemas import (
    CategoryCreate,
    CategoryOut,
    CategoryUpdate,
    ClaimRequest,
    ObsoleteRequest,
    PlayerCreate,
    PlayerOut,
    PlayerUpdate,
    PointsConfigOut,
    PointsConfigUpdate,
    RecalculateRequest,
    ReferenceCreate,
    ReferenceOut,
    RunCreate,
    RunOut,
    RunUpdate,
    VerifyRequest,
)
from runboard.services import (
    auto_claim_runs,
    claim_run,
    create_run,
    delete_run,
    get_player_or_404,
    get_run_or_404,
    group_leaderboard,
    list_unclaimed_runs,
    migrate_category_thresholds,
    player_runs,
    players_by_points,
    recalculate_all,
    recent_runs,
    recompute_player,
    set_run_obsolete,
    unverified_runs,
    unverify_run,
    update_category as edit_category,
    update_points_config as save_points_settings,
    update_run,
    verify_run,
)
from runboard.store import SqlRunStore

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Runboard - Speedrun Leaderboards",
    version="1.0.0",
    description=(
        "Run submission, verification and claiming, per-group ranking, "
        "and player points for a speedrunning leaderboard."
    ),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    setup_logging()
    Base.metadata.create_all(bind=engine)
    logger.info("Runboard API started")


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.user_message, "errors": exc.errors})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": exc.user_message})


@app.exception_handler(RunboardError)
async def runboard_error_handler(request: Request, exc: RunboardError) -> JSONResponse:
    logger.warning("Request %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": exc.user_message})


def get_store(db: Session = Depends(get_db)) -> SqlRunStore:
    return SqlRunStore(db)


def _plain(value: Any) -> Any:
    if isinstance(value, set):
        return sorted(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _result(result: TransitionResult | AggregateResult | BatchResult | SweepResult) -> dict[str, Any]:
    return _plain(asdict(result))


def _run_payload(run: Any, result: TransitionResult) -> dict[str, Any]:
    return {"run": RunOut.model_validate(run).model_dump(), "result": _result(result)}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# Runs


@app.post("/runs", status_code=201)
def submit_run(payload: RunCreate, store: SqlRunStore = Depends(get_store)):
    run, result = create_run(store, payload.model_dump())
    return _run_payload(run, result)


@app.get("/runs/unverified")
def list_unverified_runs(store: SqlRunStore = Depends(get_store)):
    return unverified_runs(store)


@app.get("/runs/recent")
def list_recent_runs(limit: int = Query(default=10, ge=1, le=100), store: SqlRunStore = Depends(get_store)):
    return recent_runs(store, limit)


@app.get("/runs/{run_id}", response_model=RunOut)
def get_run(run_id: str, store: SqlRunStore = Depends(get_store)):
    return get_run_or_404(store, run_id)


@app.patch("/runs/{run_id}")
def edit_run(run_id: str, payload: RunUpdate, store: SqlRunStore = Depends(get_store)):
    run, result = update_run(store, run_id, payload.model_dump(exclude_unset=True))
    return _run_payload(run, result)


@app.delete("/runs/{run_id}")
def remove_run(run_id: str, store: SqlRunStore = Depends(get_store)):
    return _result(delete_run(store, run_id))


@app.post("/runs/{run_id}/verify")
def verify(run_id: str, payload: VerifyRequest, store: SqlRunStore = Depends(get_store)):
    result = verify_run(store, run_id, payload.verifier)
    return _run_payload(get_run_or_404(store, run_id), result)


@app.post("/runs/{run_id}/unverify")
def unverify(run_id: str, store: SqlRunStore = Depends(get_store)):
    result = unverify_run(store, run_id)
    return _run_payload(get_run_or_404(store, run_id), result)


@app.post("/runs/{run_id}/obsolete")
def mark_obsolete(run_id: str, payload: ObsoleteRequest, store: SqlRunStore = Depends(get_store)):
    result = set_run_obsolete(store, run_id, payload.is_obsolete)
    return _run_payload(get_run_or_404(store, run_id), result)


@app.post("/runs/{run_id}/claim")
def claim(run_id: str, payload: ClaimRequest, store: SqlRunStore = Depends(get_store)):
    result = claim_run(store, run_id, payload.player_id, force=payload.force)
    if not result.ok and not result.recomputed:
        raise HTTPException(status_code=409, detail="; ".join(result.errors))
    return _run_payload(get_run_or_404(store, run_id), result)


# Leaderboards


@app.get("/leaderboards")
def get_leaderboard(
    category: str = Query(...),
    platform: str = Query(...),
    run_type: str = Query(default="solo"),
    leaderboard_type: str = Query(default="regular"),
    level: Optional[str] = Query(default=None),
    include_obsolete: bool = Query(default=False),
    store: SqlRunStore = Depends(get_store),
):
    if leaderboard_type not in LEADERBOARD_TYPES:
        raise HTTPException(status_code=400, detail="Unknown leaderboard type")
    if leaderboard_type != "regular" and not level:
        raise HTTPException(status_code=400, detail="Level is required for this leaderboard type")
    key = GroupKey(
        leaderboard_type=leaderboard_type,
        level=level.strip() if leaderboard_type != "regular" and level else None,
        category=category.strip(),
        platform=platform.strip(),
        run_type=normalize_run_type(run_type),
    )
    return {"group": key._asdict(), "entries": group_leaderboard(store, key, include_obsolete)}


@app.get("/points/leaderboard")
def points_leaderboard(limit: int = Query(default=100, ge=1, le=500), store: SqlRunStore = Depends(get_store)):
    return players_by_points(store, limit)


@app.get("/points/config", response_model=PointsConfigOut)
def get_points_config(store: SqlRunStore = Depends(get_store)):
    return store.get_points_config()


@app.put("/points/config", response_model=PointsConfigOut)
def update_points_config(payload: PointsConfigUpdate, store: SqlRunStore = Depends(get_store)):
    fields = payload.model_dump(exclude_unset=True)
    for name in ("eligible_platforms", "eligible_categories"):
        if name in fields:
            fields[name] = ",".join(v.strip() for v in (fields[name] or []) if v.strip())
    config, _ = save_points_settings(store, fields)
    return config


# Players


@app.post("/players", status_code=201, response_model=PlayerOut)
def create_player(payload: PlayerCreate, store: SqlRunStore = Depends(get_store)):
    if store.get_player(payload.uid) is not None:
        raise HTTPException(status_code=400, detail="Player already exists")
    player = store.add_player(payload.model_dump())
    store.commit()
    return player


@app.get("/players/{uid}", response_model=PlayerOut)
def get_player(uid: str, store: SqlRunStore = Depends(get_store)):
    return get_player_or_404(store, uid)


@app.patch("/players/{uid}", response_model=PlayerOut)
def update_player(uid: str, payload: PlayerUpdate, store: SqlRunStore = Depends(get_store)):
    get_player_or_404(store, uid)
    player = store.put_player(uid, payload.model_dump(exclude_unset=True))
    store.commit()
    return player


@app.get("/players/{uid}/runs")
def get_player_runs(uid: str, store: SqlRunStore = Depends(get_store)):
    return player_runs(store, uid)


@app.get("/players/{uid}/unclaimed")
def get_unclaimed_runs(uid: str, store: SqlRunStore = Depends(get_store)):
    player = get_player_or_404(store, uid)
    if not player.src_username:
        return []
    return [RunOut.model_validate(run).model_dump() for run in list_unclaimed_runs(store, player.src_username)]


@app.post("/players/{uid}/recompute")
def recompute(uid: str, store: SqlRunStore = Depends(get_store)):
    get_player_or_404(store, uid)
    return _result(recompute_player(store, uid))


@app.post("/players/{uid}/autoclaim")
def autoclaim(uid: str, store: SqlRunStore = Depends(get_store)):
    return _result(auto_claim_runs(store, uid))


# Admin


@app.post("/admin/recalculate")
def recalculate(payload: RecalculateRequest, store: SqlRunStore = Depends(get_store)):
    return _result(
        recalculate_all(
            store,
            start_after=payload.start_after,
            page_size=payload.page_size,
            max_pages=payload.max_pages,
        )
    )


@app.post("/admin/migrate-thresholds")
def migrate_thresholds(store: SqlRunStore = Depends(get_store)):
    return _result(migrate_category_thresholds(store))


# Reference data


@app.post("/categories", status_code=201, response_model=CategoryOut)
def create_category(payload: CategoryCreate, store: SqlRunStore = Depends(get_store)):
    fields = payload.model_dump()
    fields["name"] = fields["name"].strip()
    fields["leaderboard_type"] = normalize_leaderboard_type(fields["leaderboard_type"])
    category = store.add_reference(Category, fields)
    store.commit()
    return category


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(store: SqlRunStore = Depends(get_store)):
    return store.list_categories()


@app.patch("/categories/{category_id}", response_model=CategoryOut)
def update_category(category_id: str, payload: CategoryUpdate, store: SqlRunStore = Depends(get_store)):
    category, _ = edit_category(store, category_id, payload.model_dump(exclude_unset=True))
    return category


@app.post("/platforms", status_code=201, response_model=ReferenceOut)
def create_platform(payload: ReferenceCreate, store: SqlRunStore = Depends(get_store)):
    platform = store.add_reference(Platform, {"name": payload.name.strip(), "order": payload.order})
    store.commit()
    return platform


@app.get("/platforms", response_model=list[ReferenceOut])
def list_platforms(store: SqlRunStore = Depends(get_store)):
    return store.list_platforms()


@app.post("/levels", status_code=201, response_model=ReferenceOut)
def create_level(payload: ReferenceCreate, store: SqlRunStore = Depends(get_store)):
    level = store.add_reference(Level, {"name": payload.name.strip(), "order": payload.order})
    store.commit()
    return level


@app.get("/levels", response_model=list[ReferenceOut])
def list_levels(store: SqlRunStore = Depends(get_store)):
    return store.list_levels()
