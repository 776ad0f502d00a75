"""Chat endpoint: run the recursive thinking loop for one prompt.

Returns the best answer with its thinking history, or, with
``enable_streaming``, streams Server-Sent Events: one ``round`` event per
completed round and a final ``result`` (or ``error``) event.
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from rethink.api.auth import require_scope
from rethink.api.deps import RuntimeDep
from rethink.api.rate_limit import chat_rate_limit, limiter
from rethink.api.schemas import ChatRequest, ChatResponse, ThinkingRoundResponse
from rethink.auth.keys import SCOPE_CHAT
from rethink.exceptions import RethinkError
from rethink.thinking.engine import RecursiveThinkingEngine, ThinkingRound

_log = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])


@router.post(
    "/chat",
    response_model=None,
    summary="Think about a prompt",
    dependencies=[Depends(require_scope(SCOPE_CHAT))],
)
@limiter.limit(chat_rate_limit)
async def chat(
    request: Request,
    body: ChatRequest,
    runtime: RuntimeDep,
) -> StreamingResponse | ChatResponse:
    """Run the refinement loop and return the best round.

    Rate limited per client IP (CHAT_RATE_LIMIT).
    """
    if body.enable_streaming:
        return StreamingResponse(
            _stream_thinking(runtime.engine, body),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    result = await runtime.engine.think(
        body.prompt,
        context=[m.model_dump() for m in body.context],
        max_thinking_time=body.max_thinking_time,
        target_quality=body.target_quality,
        max_rounds=body.thinking_rounds,
        temperature=body.temperature,
    )
    return ChatResponse.from_result(result)


def _format_sse(event: str, payload: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


async def _stream_thinking(engine: RecursiveThinkingEngine, body: ChatRequest) -> AsyncGenerator[str, None]:
    """Run think() in a task and relay rounds as they complete."""
    queue: asyncio.Queue[ThinkingRound | None] = asyncio.Queue()

    async def on_round(thinking_round: ThinkingRound) -> None:
        await queue.put(thinking_round)

    task = asyncio.create_task(
        engine.think(
            body.prompt,
            context=[m.model_dump() for m in body.context],
            max_thinking_time=body.max_thinking_time,
            target_quality=body.target_quality,
            max_rounds=body.thinking_rounds,
            temperature=body.temperature,
            on_round=on_round,
        )
    )
    task.add_done_callback(lambda _: queue.put_nowait(None))

    try:
        while (thinking_round := await queue.get()) is not None:
            yield _format_sse("round", ThinkingRoundResponse.from_round(thinking_round).model_dump())
        result = task.result()
        yield _format_sse("result", ChatResponse.from_result(result).model_dump())
    except RethinkError as e:
        _log.warning("Streaming chat failed: %s", e)
        yield _format_sse(
            "error",
            {"type": type(e).__name__, "message": str(e), "correlation_id": e.correlation_id},
        )
    except Exception:
        _log.exception("Unhandled error in streaming chat")
        yield _format_sse("error", {"type": "internal_error", "message": "An internal error occurred."})
    finally:
        if not task.done():
            task.cancel()
