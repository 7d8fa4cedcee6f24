"""
MODULE OVERVIEW:
The staged generation simulator that feeds the `/generation` websocket rooms.

WHAT IS HAPPENING HERE:
In production an AI provider streams tokens and the generation service relays
them. Here an async generator plays that role: it walks the job through
analyzing -> generating -> optimizing -> saving, and during `generating` it
streams each of the four sections word by word. Every chunk carries the FULL text
accumulated so far (not a delta) and the last chunk of a section sets
`isComplete`, exactly like the hosted backend.
`run_generation()` consumes the generator and pushes each step to the room.
"""
import asyncio
import random
from datetime import datetime, timezone
from typing import AsyncGenerator

from loguru import logger

from scriptstream.server.connection_manager import ConnectionManager
from scriptstream.server.store import Backend
from scriptstream.shared import events
from scriptstream.shared.config import settings
from scriptstream.shared.models import SECTIONS, Generation

HOOK_OPENERS = [
    "Stop scrolling if you care about",
    "Nobody tells you this about",
    "I tried everything for",
    "Here is the fastest way to fix",
]

STAGE_PLAN = {
    "analyzing": ("Analyzing your request and preparing AI generation...", 10),
    "generating": ("Validation successful! Starting AI content generation...", 30),
    "optimizing": ("Optimizing content and calculating performance metrics...", 85),
    "saving": ("Saving your generated content...", 95),
}

# Tracked so the lifespan can cancel unfinished jobs on shutdown
background_tasks: dict[str, asyncio.Task] = {}


def compose_sections(topic: str, platform: str | None, audience: str | None) -> dict[str, str]:
    audience = audience or "busy creators"
    platform = platform or "tiktok"
    return {
        "title": f"{topic.title()}: the {platform} playbook",
        "hook": f"{random.choice(HOOK_OPENERS)} {topic}?",
        "script": (
            f"Most {audience} get {topic} wrong in the first three seconds. "
            f"Open with the result, then show the single step that got you there. "
            f"Keep every cut under two seconds and end on the payoff."
        ),
        "cta": f"Follow for part two and save this before you plan your next {platform} post.",
    }


async def stream_generation(topic: str, generation: Generation) -> AsyncGenerator[tuple[str, dict], None]:
    """Yields (event, data) pairs for one job, ending with `generation_completed`."""
    delay = settings.SIMULATION_STEP_DELAY_S
    sections = compose_sections(topic, generation.platform, generation.target_audience)

    for stage in ("analyzing", "generating"):
        message, progress = STAGE_PLAN[stage]
        yield events.GENERATION_STAGE, {"stage": stage, "message": message, "progress": progress}
        await asyncio.sleep(delay)

    for index, section in enumerate(SECTIONS):
        words = sections[section].split(" ")
        for count in range(1, len(words) + 1):
            done = count == len(words)
            # 30% -> 80% of the bar belongs to content streaming
            progress = 30 + 50 * (index + count / len(words)) / len(SECTIONS)
            yield events.CONTENT_CHUNK, {
                "section": section,
                "content": " ".join(words[:count]),
                "isComplete": done,
                "totalProgress": round(progress, 1),
            }
            await asyncio.sleep(delay / 4)

    for stage in ("optimizing", "saving"):
        message, progress = STAGE_PLAN[stage]
        yield events.GENERATION_STAGE, {"stage": stage, "message": message, "progress": progress}
        await asyncio.sleep(delay)

    final = generation.model_copy(
        update={**sections, "status": "completed", "updated_at": datetime.now(timezone.utc)}
    )
    yield events.GENERATION_COMPLETED, {
        "generation": final.model_dump(mode="json"),
        "message": "Generation completed successfully!",
    }


async def run_generation(generation_id: str, backend: Backend, manager: ConnectionManager) -> None:
    generation = backend.get_generation(generation_id)
    if generation is None:
        return
    topic = backend.topics.get(generation_id, "your product")
    logger.info(f"event=simulation_start generation_id={generation_id}")
    try:
        async for event, data in stream_generation(topic, generation):
            if event == events.GENERATION_COMPLETED:
                backend.save_generation(Generation.model_validate(data["generation"]))
            await manager.emit_to_generation(generation_id, event, data)
        logger.info(f"event=simulation_done generation_id={generation_id}")
    except asyncio.CancelledError:
        logger.debug(f"event=simulation_cancelled generation_id={generation_id}")
        raise
    except Exception as e:
        logger.error(f"event=simulation_error generation_id={generation_id} reason='{e}'")
        backend.save_generation(generation.model_copy(update={"status": "failed"}))
        await manager.emit_to_generation(generation_id, events.GENERATION_ERROR, {"error": str(e)})
    finally:
        background_tasks.pop(generation_id, None)


def ensure_simulation(generation_id: str, backend: Backend, manager: ConnectionManager) -> bool:
    """Starts the job the first time someone joins a pending generation. Returns True if started."""
    generation = backend.get_generation(generation_id)
    if generation is None or generation.status != "pending" or generation_id in background_tasks:
        return False
    background_tasks[generation_id] = asyncio.create_task(run_generation(generation_id, backend, manager))
    return True


async def cancel_all() -> None:
    tasks = list(background_tasks.values())
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
