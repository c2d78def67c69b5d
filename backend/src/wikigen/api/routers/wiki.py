"""Wiki generation endpoint streaming server-sent events."""

import asyncio
import logging
from contextlib import aclosing

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from wikigen.api.deps import get_pipeline
from wikigen.api.schemas import GenerateWikiRequest
from wikigen.constants.generation import PROGRESS_STARTED
from wikigen.generation.events import ProgressEvent
from wikigen.generation.orchestrator import WikiGenerationPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wiki", tags=["wiki"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/generate")
async def generate_wiki(
    request: GenerateWikiRequest,
    pipeline: WikiGenerationPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    """Generate a wiki for the posted repository snapshot.

    Streams progress, ping, complete and error events. Disconnecting stops
    the run, including any page calls still in flight.
    """
    snapshot = request.to_snapshot()
    cancel_event = asyncio.Event()

    async def event_generator():
        finished = False
        yield ProgressEvent(
            progress=PROGRESS_STARTED, message="Starting wiki generation..."
        ).to_sse()
        try:
            async with aclosing(
                pipeline.run(snapshot, cancel_event=cancel_event, mode=request.mode)
            ) as events:
                async for event in events:
                    yield event.to_sse()
            finished = True
        finally:
            if not finished:
                cancel_event.set()
                logger.info(f"Client disconnected; cancelled wiki generation for {snapshot.full_name}")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
