"""
Meetflow FastAPI Application

Command surface for the capture-and-annotate pipeline.

Endpoints:
    GET  /health                     - Health and readiness
    GET  /status                     - Full orchestrator status
    GET  /api/v1/sessions/{id}/events - Replay a session's published events
    POST /api/v1/recording/start     - Start a recording session
    POST /api/v1/recording/stop      - Stop the active session
    POST /api/v1/detection/start     - Start participant detection
    POST /api/v1/detection/stop      - Stop participant detection
    WebSocket /api/v1/audio/stream   - PCM16 audio frames in
    WebSocket /api/v1/video/stream   - Base64 video frames in
    WebSocket /api/v1/events         - Pipeline events out
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from meetflow.audio.pcm import pcm16_to_float32
from meetflow.shared.errors import InputAcquisitionError
from meetflow.shared.event_broker import EventBroker
from meetflow.shared.events import PipelineEvent

from .config import PipelineConfig
from .models import CommandResponse, HealthResponse, SessionEventsResponse, VideoFrameMessage
from .pipeline import PipelineOrchestrator
from .state_manager import State

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global state
config: Optional[PipelineConfig] = None
orchestrator: Optional[PipelineOrchestrator] = None
redis_client: Optional[redis.Redis] = None
event_broker: Optional[EventBroker] = None
loading_task: Optional[asyncio.Task] = None
app_start_time: float = time.time()

EVENT_QUEUE_SIZE = 1000


def create_orchestrator(config: PipelineConfig, broker: Optional[EventBroker] = None) -> PipelineOrchestrator:
    """Build the orchestrator with HTTP stage clients from the configuration."""
    return PipelineOrchestrator(config, broker=broker)


async def connect_redis(config: PipelineConfig) -> Optional[redis.Redis]:
    """Connect to Redis for event publishing. Returns None when unavailable."""
    client = redis.from_url(config.redis_url)
    for attempt in range(3):
        try:
            await asyncio.wait_for(client.ping(), timeout=5.0)
            logger.info(f"✅ Redis connected (attempt {attempt + 1})")
            return client
        except (asyncio.TimeoutError, redis.RedisError, OSError) as e:
            logger.warning(f"⚠️ Redis error: {e} (attempt {attempt + 1}/3)")
            if attempt < 2:
                await asyncio.sleep(2.0)
    await client.aclose()
    logger.warning("⚠️ Redis unavailable - events will not be published")
    return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for application startup/shutdown"""
    global config, orchestrator, redis_client, event_broker, loading_task

    logger.info("=" * 70)
    logger.info("🚀 Starting Meetflow Orchestrator")
    logger.info("=" * 70)

    config = PipelineConfig.from_env()
    logging.getLogger("meetflow").setLevel(config.log_level.upper())

    event_broker = None
    if config.publish_events:
        redis_client = await connect_redis(config)
        if redis_client is not None:
            event_broker = EventBroker(
                redis_client, stream_prefix=config.stream_prefix, max_len=config.stream_max_len
            )

    orchestrator = create_orchestrator(config, event_broker)

    # Stages load in the background so health checks answer while models warm up
    loading_task = asyncio.create_task(orchestrator.start())
    logger.info("⏳ Loading inference stages...")

    yield

    logger.info("=" * 70)
    logger.info("🛑 Shutting down Meetflow Orchestrator...")
    logger.info("=" * 70)

    if loading_task is not None and not loading_task.done():
        loading_task.cancel()
        await asyncio.gather(loading_task, return_exceptions=True)
    await orchestrator.shutdown()
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
    event_broker = None
    orchestrator = None
    logger.info("✅ Shutdown complete")


app = FastAPI(
    title="Meetflow Orchestrator",
    description="Real-time capture-and-annotate pipeline",
    version="1.0.0",
    lifespan=lifespan,
)


def _require_orchestrator() -> PipelineOrchestrator:
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return orchestrator


def _command_response(orch: PipelineOrchestrator, command: str, success: bool, message: str) -> CommandResponse:
    session_id = orch.session.session_id if orch.session and orch.state == State.RECORDING else None
    return CommandResponse(
        success=success,
        command=command,
        state=orch.state.value,
        session_id=session_id,
        message=message,
    )


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint"""
    orch = _require_orchestrator()
    if orch.gate.blocked:
        status = "degraded"
    elif orch.gate.all_ready:
        status = "healthy"
    else:
        status = "loading"

    redis_connected = False
    if redis_client is not None:
        try:
            redis_connected = bool(await redis_client.ping())
        except (redis.RedisError, OSError):
            redis_connected = False

    return HealthResponse(
        status=status,
        state=orch.state.value,
        readiness=orch.gate.snapshot(),
        detection_active=bool(orch.detection and orch.detection.active),
        redis_connected=redis_connected,
        uptime_seconds=time.time() - app_start_time,
    )


@app.get("/status")
async def status():
    return _require_orchestrator().get_status()


@app.get("/api/v1/sessions/{session_id}/events", response_model=SessionEventsResponse)
async def session_events(session_id: str, last_id: str = "0", count: int = Query(100, ge=1, le=1000)):
    """Replay events published to a session's stream after last_id."""
    if event_broker is None:
        raise HTTPException(status_code=503, detail="Event publishing disabled")
    try:
        entries = await event_broker.read_events(session_id, last_id=last_id, count=count)
    except (redis.RedisError, OSError) as e:
        logger.warning(f"Event replay failed for {session_id}: {e}")
        raise HTTPException(status_code=503, detail=f"Event stream unavailable: {e}")

    return SessionEventsResponse(
        session_id=session_id,
        events=[event.to_dict() for _message_id, event in entries],
        last_id=entries[-1][0] if entries else last_id,
    )


@app.post("/api/v1/recording/start", response_model=CommandResponse)
async def start_recording():
    orch = _require_orchestrator()
    try:
        started = await orch.start_recording()
    except InputAcquisitionError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not started:
        raise HTTPException(status_code=409, detail=f"Cannot start recording in state {orch.state.value}")
    return _command_response(orch, "start_recording", True, "Recording started")


@app.post("/api/v1/recording/stop", response_model=CommandResponse)
async def stop_recording():
    orch = _require_orchestrator()
    stopped = await orch.stop_recording()
    message = "Recording stopped" if stopped else f"Not recording (state {orch.state.value})"
    return _command_response(orch, "stop_recording", stopped, message)


@app.post("/api/v1/detection/start", response_model=CommandResponse)
async def start_detection():
    orch = _require_orchestrator()
    try:
        started = await orch.start_detection()
    except InputAcquisitionError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not started:
        raise HTTPException(status_code=409, detail="Detection unavailable or already running")
    return _command_response(orch, "start_detection", True, "Detection started")


@app.post("/api/v1/detection/stop", response_model=CommandResponse)
async def stop_detection():
    orch = _require_orchestrator()
    stopped = await orch.stop_detection()
    message = "Detection stopped" if stopped else "Detection not running"
    return _command_response(orch, "stop_detection", stopped, message)


@app.websocket("/api/v1/audio/stream")
async def audio_stream(websocket: WebSocket):
    """Binary messages carry little-endian PCM16 mono audio at the configured sample rate."""
    orch = orchestrator
    if orch is None:
        await websocket.close(code=1013)
        return
    await websocket.accept()
    received = 0
    refused = 0
    try:
        while True:
            audio_chunk = await websocket.receive_bytes()
            try:
                samples = pcm16_to_float32(audio_chunk)
            except ValueError as e:
                logger.warning(f"Invalid audio frame: {e}")
                continue
            received += 1
            if not orch.audio_source.feed(samples):
                refused += 1
    except WebSocketDisconnect:
        logger.info(f"🔌 Audio stream closed ({received} frames, {refused} refused)")


@app.websocket("/api/v1/video/stream")
async def video_stream(websocket: WebSocket):
    """Text messages carry {"image": "<base64>", "width": ..., "height": ...} or a bare base64 string."""
    orch = orchestrator
    if orch is None:
        await websocket.close(code=1013)
        return
    await websocket.accept()
    try:
        while True:
            message = await websocket.receive_text()
            frame = message
            if message.lstrip().startswith("{"):
                try:
                    frame = VideoFrameMessage.model_validate(json.loads(message))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning(f"Invalid video frame message: {e}")
                    continue
            orch.video_source.feed(frame)
    except WebSocketDisconnect:
        logger.info("🔌 Video stream closed")


@app.websocket("/api/v1/events")
async def events_stream(websocket: WebSocket):
    """Every PipelineEvent as JSON, in emission order."""
    orch = orchestrator
    if orch is None:
        await websocket.close(code=1013)
        return
    queue: asyncio.Queue = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

    def enqueue(event: PipelineEvent) -> None:
        try:
            queue.put_nowait(event.to_dict())
        except asyncio.QueueFull:
            logger.warning(f"Event subscriber lagging, dropped {event.event_type}")

    async def send_events():
        while True:
            await websocket.send_json(await queue.get())

    async def wait_disconnect():
        # Inbound messages are ignored; this only notices the client leaving
        while True:
            await websocket.receive_text()

    # Subscribe before accepting so events raised right after the handshake are kept
    orch.add_output_handler(enqueue)
    try:
        await websocket.accept()
    except Exception:
        orch.remove_output_handler(enqueue)
        raise
    logger.info("📡 Event subscriber connected")
    sender = asyncio.create_task(send_events())
    receiver = asyncio.create_task(wait_disconnect())
    try:
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"Event subscriber error: {error}")
    finally:
        sender.cancel()
        receiver.cancel()
        orch.remove_output_handler(enqueue)
        logger.info("📡 Event subscriber disconnected")


if __name__ == "__main__":
    import uvicorn
    startup_config = PipelineConfig.from_env()
    uvicorn.run(app, host=startup_config.host, port=startup_config.port, log_level="info")
