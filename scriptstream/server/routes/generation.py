"""
MODULE OVERVIEW:
REST endpoints for generation records plus the `/generation` websocket channel.

WHAT IS HAPPENING HERE:
`POST /generation` only creates a pending record. The content is produced later,
when the first socket joins that generation's room: the join starts the staged
simulation and every watcher of the room receives its events.
The websocket authenticates from the `token` query parameter. A bad token is
refused BEFORE the upgrade is accepted, which the client sees as an HTTP 403
handshake rejection and answers with a token refresh.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from scriptstream.server.connection_manager import manager
from scriptstream.server.simulation import compose_sections, ensure_simulation
from scriptstream.server.store import backend, make_generation_id
from scriptstream.shared import events
from scriptstream.shared.errors import MalformedPayloadError
from scriptstream.shared.models import AuthUser, Generation
from scriptstream.shared.route_utils import current_user, envelope, extract_client_id, log_connection

router = APIRouter(prefix="/generation")


class CreateGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic: str = Field(min_length=1)
    platform: str = "tiktok"
    niche: str | None = None
    target_audience: str | None = Field(default=None, alias="targetAudience")


class DemoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_name: str = Field(alias="productName", min_length=1)
    niche: str
    target_audience: str = Field(alias="targetAudience")


def _dump(generation: Generation) -> dict:
    return generation.model_dump(mode="json")


# ==========================
# REST
# ==========================
@router.post("", status_code=201)
async def create_generation(body: CreateGenerationRequest, user: AuthUser = Depends(current_user)):
    generation = backend.create_generation(user.id, body.topic, body.platform, body.niche, body.target_audience)
    logger.info(f"event=generation_created generation_id={generation.id} user_id={user.id}")
    return envelope(_dump(generation))


@router.get("")
async def list_generations(limit: int | None = Query(None, ge=1, le=100), user: AuthUser = Depends(current_user)):
    return envelope([_dump(g) for g in backend.list_generations(user.id, limit)])


@router.get("/recent")
async def recent_generations(limit: int = Query(10, ge=1, le=100), user: AuthUser = Depends(current_user)):
    return envelope([_dump(g) for g in backend.list_generations(user.id, limit)])


@router.post("/demo")
async def demo_generations(body: DemoRequest):
    """Public preview: three finished samples, nothing stored."""
    samples = []
    for platform in ("tiktok", "instagram", "youtube"):
        sections = compose_sections(body.product_name, platform, body.target_audience)
        samples.append(
            Generation(
                id=make_generation_id(),
                platform=platform,
                niche=body.niche,
                target_audience=body.target_audience,
                status="completed",
                is_demo=True,
                **sections,
            )
        )
    return envelope([_dump(g) for g in samples])


@router.get("/{generation_id}")
async def get_generation(generation_id: str, user: AuthUser = Depends(current_user)):
    generation = backend.get_generation(generation_id, user.id)
    if generation is None:
        raise HTTPException(status_code=404, detail=f"Generation {generation_id} not found")
    return envelope(_dump(generation))


# ==========================
# WEBSOCKET
# ==========================
async def _handle_join(cid: str, data: dict) -> None:
    generation_id = data.get("generationId")
    if not isinstance(generation_id, str) or not generation_id:
        raise MalformedPayloadError(events.JOIN_GENERATION, "generationId is required")

    manager.join(cid, generation_id)
    await manager.send(cid, events.GENERATION_STARTED, {
        "generationId": generation_id,
        "message": "Connected to generation stream",
    })

    generation = backend.get_generation(generation_id)
    if generation is not None and generation.status == "completed":
        # Late joiner: the stream is over, hand over the result directly
        await manager.send(cid, events.GENERATION_COMPLETED, {
            "generationId": generation_id,
            "generation": _dump(generation),
            "message": "Generation completed successfully!",
        })
        return
    ensure_simulation(generation_id, backend, manager)


async def _handle_cancel(cid: str, data: dict) -> None:
    generation_id = data.get("generationId")
    # Advisory: the job keeps running for other watchers, this socket just stops watching
    manager.leave(cid)
    await manager.send(cid, events.GENERATION_ERROR, {
        "generationId": generation_id,
        "error": "Generation cancelled by user",
    })


async def _handle_ping(cid: str, data: dict) -> None:
    await manager.send(cid, events.PONG, {"timestamp": data.get("timestamp")})


HANDLERS = {
    events.JOIN_GENERATION: _handle_join,
    events.CANCEL_GENERATION: _handle_cancel,
    events.PING: _handle_ping,
}


@router.websocket("")
async def generation_socket(
    websocket: WebSocket,
    token: str | None = Query(None),
    client_id: str | None = Query(None, alias="clientId"),
):
    cid = extract_client_id(client_id)
    user = backend.user_for_access_token(token)
    if user is None:
        log_connection("websocket:rejected", cid, {"reason": "invalid_token"})
        await websocket.close(code=1008)
        return

    await manager.connect(cid, websocket)
    log_connection("websocket:connect", cid, {"user_id": user.id})
    await manager.send(cid, events.CONNECTION_STATUS, {"status": "connected", "socketId": cid})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = events.decode_message(raw)
                handler = HANDLERS.get(message.event)
                if handler is None:
                    logger.debug(f"client_id={cid} event=unhandled name={message.event}")
                    continue
                await handler(cid, message.data)
            except MalformedPayloadError as e:
                logger.warning(f"client_id={cid} event=malformed_payload reason='{e}'")
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(cid)
        log_connection("websocket:disconnect", cid)
