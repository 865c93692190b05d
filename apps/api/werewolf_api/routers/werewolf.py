"""Werewolf queue, match action and spectator endpoints."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from ..services.match_poller import match_poller_status
from ..services.werewolf_engine import get_engine


logger = logging.getLogger("werewolf_api.routers.werewolf")

router = APIRouter(prefix="/api/v1/werewolf", tags=["werewolf"])


class PlayerRequest(BaseModel):
    player_id: str = Field(min_length=1, max_length=120)


class QueueJoinRequest(PlayerRequest):
    idempotency_key: Optional[str] = Field(default=None, min_length=8, max_length=128)


class MatchActionRequest(PlayerRequest):
    idempotency_key: Optional[str] = Field(default=None, min_length=8, max_length=128)
    round_number: Optional[int] = Field(default=None, ge=0)


class SayPublicRequest(MatchActionRequest):
    text: str = Field(min_length=1, max_length=500)


class WolfChatRequest(MatchActionRequest):
    text: str = Field(min_length=1, max_length=400)


class VoteRequest(MatchActionRequest):
    target_id: Optional[str] = Field(default=None, max_length=120)
    reason: Optional[str] = Field(default=None, max_length=200)


class NightTargetRequest(MatchActionRequest):
    target_id: str = Field(min_length=1, max_length=120)


@router.post("/queue/join")
def queue_join(req: QueueJoinRequest) -> dict[str, Any]:
    status = get_engine().queue_join(player_id=req.player_id, idempotency_key=req.idempotency_key)
    return {"ok": True, **status}


@router.post("/queue/leave")
def queue_leave(req: PlayerRequest) -> dict[str, Any]:
    return {"ok": True, **get_engine().queue_leave(player_id=req.player_id)}


@router.get("/queue/status")
def queue_status(player_id: str = Query(min_length=1, max_length=120)) -> dict[str, Any]:
    return {"ok": True, **get_engine().queue_status(player_id=player_id)}


@router.get("/matches")
def list_matches(
    status: str = Query(default="active", pattern="^(active|ended|all)$"),
    limit: int = Query(default=50, ge=1, le=200),
) -> dict[str, Any]:
    items = get_engine().list_matches(status=status, limit=limit)
    return {"count": len(items), "matches": items}


@router.get("/matches/{match_id}/state")
def match_state(match_id: str, viewer_id: Optional[str] = Query(default=None)) -> dict[str, Any]:
    return {"ok": True, "state": get_engine().get_state(match_id=match_id, viewer_id=viewer_id)}


@router.get("/matches/{match_id}/events")
def match_events(
    match_id: str,
    viewer_id: Optional[str] = Query(default=None),
    since_seq: Optional[int] = Query(default=None, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
) -> dict[str, Any]:
    return {
        "ok": True,
        **get_engine().events_get(match_id=match_id, viewer_id=viewer_id, since_seq=since_seq, limit=limit),
    }


@router.post("/matches/{match_id}/ready")
def ready(match_id: str, req: MatchActionRequest) -> dict[str, Any]:
    return get_engine().ready(
        match_id=match_id,
        player_id=req.player_id,
        idempotency_key=req.idempotency_key,
        round_number=req.round_number,
    )


@router.post("/matches/{match_id}/say")
def say_public(match_id: str, req: SayPublicRequest) -> dict[str, Any]:
    return get_engine().say_public(
        match_id=match_id,
        player_id=req.player_id,
        text=req.text,
        idempotency_key=req.idempotency_key,
        round_number=req.round_number,
    )


@router.post("/matches/{match_id}/vote")
def vote(match_id: str, req: VoteRequest) -> dict[str, Any]:
    return get_engine().vote(
        match_id=match_id,
        player_id=req.player_id,
        target_id=req.target_id,
        reason=req.reason,
        idempotency_key=req.idempotency_key,
        round_number=req.round_number,
    )


@router.post("/matches/{match_id}/night/wolf-chat")
def wolf_chat(match_id: str, req: WolfChatRequest) -> dict[str, Any]:
    return get_engine().wolf_chat(
        match_id=match_id,
        player_id=req.player_id,
        text=req.text,
        idempotency_key=req.idempotency_key,
        round_number=req.round_number,
    )


@router.post("/matches/{match_id}/night/wolf-kill")
def wolf_kill(match_id: str, req: NightTargetRequest) -> dict[str, Any]:
    return get_engine().wolf_kill(
        match_id=match_id,
        player_id=req.player_id,
        target_id=req.target_id,
        idempotency_key=req.idempotency_key,
        round_number=req.round_number,
    )


@router.post("/matches/{match_id}/night/seer-inspect")
def seer_inspect(match_id: str, req: NightTargetRequest) -> dict[str, Any]:
    return get_engine().seer_inspect(
        match_id=match_id,
        player_id=req.player_id,
        target_id=req.target_id,
        idempotency_key=req.idempotency_key,
        round_number=req.round_number,
    )


@router.post("/matches/{match_id}/night/doctor-protect")
def doctor_protect(match_id: str, req: NightTargetRequest) -> dict[str, Any]:
    return get_engine().doctor_protect(
        match_id=match_id,
        player_id=req.player_id,
        target_id=req.target_id,
        idempotency_key=req.idempotency_key,
        round_number=req.round_number,
    )


@router.post("/matches/{match_id}/advance")
def advance_match(match_id: str) -> dict[str, Any]:
    return {"ok": True, **get_engine().advance(match_id=match_id)}


@router.post("/advance")
def advance_all() -> dict[str, Any]:
    result = get_engine().advance_all()
    if result["advanced"]:
        logger.info("[PHASE] Manual advance moved %d matches", len(result["advanced"]))
    return {"ok": True, **result}


@router.get("/poller")
def poller_status() -> dict[str, Any]:
    return {"ok": True, "poller": match_poller_status()}
