"""
Integration tests for PipelineOrchestrator with in-process stages.
"""

import asyncio

import numpy as np
import pytest

from meetflow.audio.segmentation import FixedAccumulation
from meetflow.orchestrator.config import PipelineConfig
from meetflow.orchestrator.inputs import InputSource, PushInputSource
from meetflow.orchestrator.state_manager import State
from meetflow.shared.errors import InputAcquisitionError
from meetflow.shared.events import EventTypes

from .conftest import frames, settle, wait_until


def push_all(orchestrator, chunks):
    return [orchestrator.push_audio_frame(chunk) for chunk in chunks]


class FailingSource(InputSource):
    async def open(self, on_frame):
        raise OSError("microphone permission denied")

    async def close(self):
        pass


class SlowSource(PushInputSource):
    """Device that takes a moment to open."""

    async def open(self, on_frame):
        await asyncio.sleep(0.01)
        await super().open(on_frame)


@pytest.mark.integration
class TestLoading:

    @pytest.mark.asyncio
    async def test_start_reaches_ready(self, make_orchestrator, events):
        orchestrator = make_orchestrator()

        assert await orchestrator.start()

        assert orchestrator.state == State.READY
        assert len(events.of(EventTypes.STAGE_READY)) == 5
        assert len(events.of(EventTypes.PIPELINE_READY)) == 1
        assert events.types()[-1] == EventTypes.PIPELINE_READY
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_required_stage_failure_blocks(self, make_orchestrator, script, events):
        script.failing_loads.add("summary")
        orchestrator = make_orchestrator()

        assert await orchestrator.start() is False

        assert orchestrator.state == State.LOADING
        assert orchestrator.gate.blocked
        assert events.of(EventTypes.STAGE_FAILED)[0].payload["stage"] == "summary"
        assert await orchestrator.start_recording() is False
        await orchestrator.shutdown()
        assert orchestrator.state == State.IDLE

    @pytest.mark.asyncio
    async def test_optional_stage_failure_excluded(self, make_orchestrator, script):
        script.failing_loads.add("detection")
        orchestrator = make_orchestrator(optional=("detection",))

        assert await orchestrator.start()
        assert await orchestrator.start_detection() is False
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, orchestrator):
        assert await orchestrator.start() is False
        assert orchestrator.state == State.READY

    def test_transcription_stage_required(self, config):
        from meetflow.orchestrator.pipeline import PipelineOrchestrator
        with pytest.raises(ValueError):
            PipelineOrchestrator(config, stages={})


@pytest.mark.integration
class TestRecording:

    @pytest.mark.asyncio
    async def test_silent_window_never_submitted(self, orchestrator, script, events):
        """16000 silent samples: one window extracted, discarded, nothing transcribed."""
        await orchestrator.start_recording()

        assert all(push_all(orchestrator, frames(0.0, 10)))
        await orchestrator.stop_recording()
        await settle(orchestrator)

        assert script.calls["transcription"] == []
        discarded = events.of(EventTypes.WINDOW_DISCARDED)
        assert len(discarded) == 1
        assert discarded[0].payload["sample_count"] == 16000
        assert events.of(EventTypes.SUMMARY) == []

    @pytest.mark.asyncio
    async def test_full_cascade(self, orchestrator, script, events):
        """Window -> transcript fragment -> keywords -> idea, then summary on stop."""
        await orchestrator.start_recording()
        session_id = orchestrator.session.session_id

        push_all(orchestrator, frames(0.2, 10))
        assert await orchestrator.stop_recording()
        await settle(orchestrator)

        assert len(script.calls["transcription"]) == 1
        request = script.calls["transcription"][0]
        assert len(request.samples) == 16000
        assert request.sample_rate == 16000

        fragment = events.of(EventTypes.TRANSCRIPT_FRAGMENT)[0]
        assert fragment.payload == {"text": "hello world", "sequence": 0}
        assert fragment.session_id == session_id

        assert events.of(EventTypes.KEYWORDS)[0].payload["keywords"] == ["hello", "world"]
        idea = events.of(EventTypes.IDEA)[0].payload
        assert idea["text"] == script.idea_text
        assert idea["keywords"] == ["hello", "world"]
        assert len(orchestrator.ideas) == 1

        summary = events.of(EventTypes.SUMMARY)[0].payload
        assert summary["summary"] == "summary of: hello world"
        assert summary["trigger"] == "session_stop"
        assert orchestrator.state == State.READY

    @pytest.mark.asyncio
    async def test_transcript_order_and_normalization(self, orchestrator, script):
        script.transcripts.extend(["first point", "Second point!", "  ", "third"])
        await orchestrator.start_recording()

        push_all(orchestrator, frames(0.2, 40))
        await orchestrator.stop_recording()
        await settle(orchestrator)

        assert script.calls["summary"][0].content_of("user") == "first point. Second point! third"

    @pytest.mark.asyncio
    async def test_stage_error_drops_one_fragment(self, orchestrator, script, events, transcription_error):
        script.transcripts.extend(["alpha", transcription_error, "gamma"])
        await orchestrator.start_recording()

        push_all(orchestrator, frames(0.2, 30))
        await orchestrator.stop_recording()
        await settle(orchestrator)

        assert [e.payload["text"] for e in events.of(EventTypes.TRANSCRIPT_FRAGMENT)] == ["alpha", "gamma"]
        assert events.of(EventTypes.ERROR)[0].payload["source"] == "transcription"
        assert orchestrator.stages["transcription"].ready

    @pytest.mark.asyncio
    async def test_batch_keyword_mode(self, make_orchestrator, script, events):
        orchestrator = make_orchestrator(config=PipelineConfig(segmentation_policy="fixed", keyword_mode="batch"))
        await orchestrator.start()
        script.transcripts.extend(["budget review", "budget plan"])
        await orchestrator.start_recording()

        push_all(orchestrator, frames(0.2, 20))
        await wait_until(lambda: len(events.of(EventTypes.TRANSCRIPT_FRAGMENT)) == 2)
        assert events.of(EventTypes.IDEA) == []

        await orchestrator.stop_recording()
        await settle(orchestrator)

        keywords = events.of(EventTypes.KEYWORDS)
        assert len(keywords) == 1
        assert keywords[0].payload["text"] == "budget review. budget plan"
        assert keywords[0].payload["keywords"][0] == "budget"
        assert len(events.of(EventTypes.IDEA)) == 1
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_trailing_partial_discarded(self, orchestrator, script):
        await orchestrator.start_recording()

        push_all(orchestrator, frames(0.2, 15))
        await orchestrator.stop_recording()
        await settle(orchestrator)

        assert len(script.calls["transcription"]) == 1

    @pytest.mark.asyncio
    async def test_trailing_partial_flushed_when_configured(self, make_orchestrator, script):
        orchestrator = make_orchestrator(
            config=PipelineConfig(segmentation_policy="fixed", flush_trailing_window=True)
        )
        await orchestrator.start()
        await orchestrator.start_recording()

        push_all(orchestrator, frames(0.2, 15))
        await orchestrator.stop_recording()
        await settle(orchestrator)

        assert [len(r.samples) for r in script.calls["transcription"]] == [16000, 8000]
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_stop_halts_ingestion(self, orchestrator):
        await orchestrator.start_recording()
        session = orchestrator.session

        await orchestrator.stop_recording()

        assert orchestrator.push_audio_frame(np.full(1600, 0.2)) is False
        assert len(session.buffer) == 0
        assert session.transcript.text == ""

    @pytest.mark.asyncio
    async def test_commands_outside_source_state(self, orchestrator):
        assert await orchestrator.stop_recording() is False
        assert await orchestrator.start_recording()
        assert await orchestrator.start_recording() is False
        assert orchestrator.state == State.RECORDING

    @pytest.mark.asyncio
    async def test_state_events(self, orchestrator, events):
        await orchestrator.start_recording()
        await orchestrator.stop_recording()

        transitions = [
            (e.payload["old_state"], e.payload["new_state"])
            for e in events.of(EventTypes.STATE_CHANGED)
        ]
        assert transitions[-3:] == [("ready", "recording"), ("recording", "stopping"), ("stopping", "ready")]

    @pytest.mark.asyncio
    async def test_input_acquisition_failure(self, make_orchestrator):
        orchestrator = make_orchestrator(audio_source=FailingSource("microphone"))
        await orchestrator.start()

        with pytest.raises(InputAcquisitionError, match="permission denied"):
            await orchestrator.start_recording()

        assert orchestrator.state == State.READY
        assert orchestrator.session is None
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_overlapping_start_commands(self, make_orchestrator, script):
        """A second start while the input is still opening is a no-op."""
        orchestrator = make_orchestrator(audio_source=SlowSource("microphone"))
        await orchestrator.start()

        results = await asyncio.gather(
            orchestrator.start_recording(),
            orchestrator.start_recording(),
            return_exceptions=True,
        )

        assert results == [True, False]
        assert orchestrator.state == State.RECORDING
        assert orchestrator.session is not None
        assert orchestrator.audio_source.feed(np.full(16000, 0.2, dtype=np.float32))

        assert await orchestrator.stop_recording()
        assert orchestrator.state == State.READY
        assert len(script.calls["transcription"]) == 1
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_while_input_opening(self, make_orchestrator):
        source = SlowSource("microphone")
        orchestrator = make_orchestrator(audio_source=source)
        await orchestrator.start()

        starting = asyncio.create_task(orchestrator.start_recording())
        await asyncio.sleep(0)
        await orchestrator.shutdown()

        assert starting.done() and starting.result() is True
        assert orchestrator.state == State.IDLE
        assert orchestrator.session is None
        assert not source.is_open

    @pytest.mark.asyncio
    async def test_overlapping_detection_starts(self, make_orchestrator):
        orchestrator = make_orchestrator(video_source=SlowSource("camera"))
        await orchestrator.start()

        results = await asyncio.gather(
            orchestrator.start_detection(),
            orchestrator.start_detection(),
            return_exceptions=True,
        )

        assert results == [True, False]
        assert orchestrator.detection.active
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_capture_error_aborts_session(self, orchestrator, events):
        class BrokenPolicy(FixedAccumulation):
            def observe(self, frame):
                raise RuntimeError("corrupt frame")

        orchestrator.policy = BrokenPolicy(16000)
        await orchestrator.start_recording()

        orchestrator.push_audio_frame(np.full(1600, 0.2))
        await wait_until(lambda: orchestrator.state == State.READY)

        error = events.of(EventTypes.ERROR)[0]
        assert error.payload == {"source": "capture", "error": "corrupt frame"}
        assert events.of(EventTypes.STATE_CHANGED)[-2].payload["trigger"] == "capture_error"

    @pytest.mark.asyncio
    async def test_audio_source_feeds_orchestrator(self, orchestrator, script):
        await orchestrator.start_recording()

        fed = [orchestrator.audio_source.feed(chunk) for chunk in frames(0.2, 10)]
        await orchestrator.stop_recording()
        await settle(orchestrator)

        assert all(fed)
        assert orchestrator.audio_source.feed(np.zeros(10)) is False
        assert len(script.calls["transcription"]) == 1


@pytest.mark.integration
class TestDetection:

    @pytest.mark.asyncio
    async def test_participant_increase_triggers_summary(self, orchestrator, script, events, scheduler):
        await orchestrator.start_recording()
        push_all(orchestrator, frames(0.2, 10))
        await wait_until(lambda: orchestrator.session.transcript.text == "hello world")

        assert await orchestrator.start_detection()
        script.person_counts.append(2)
        assert orchestrator.push_video_frame("aW1hZ2U=")
        await settle(orchestrator)

        detection = events.of(EventTypes.DETECTION)[0].payload
        assert detection["is_new_person"] is True
        assert detection["count"] == 2
        assert events.of(EventTypes.PARTICIPANT_INCREASE) == []

        scheduler.fire_all()
        await settle(orchestrator)

        increase = events.of(EventTypes.PARTICIPANT_INCREASE)[0]
        assert increase.payload == {"previous": 0, "count": 2}
        summary = events.of(EventTypes.SUMMARY)[0].payload
        assert summary["trigger"] == "participant_increase"
        assert summary["summary"] == "summary of: hello world"

    @pytest.mark.asyncio
    async def test_increase_with_empty_transcript_skips_summary(self, orchestrator, script, events, scheduler):
        assert await orchestrator.start_detection()
        script.person_counts.append(1)
        orchestrator.push_video_frame("aW1hZ2U=")
        await settle(orchestrator)
        scheduler.fire_all()
        await settle(orchestrator)

        assert len(events.of(EventTypes.PARTICIPANT_INCREASE)) == 1
        assert script.calls["summary"] == []

    @pytest.mark.asyncio
    async def test_video_frames_throttled(self, orchestrator, script, clock):
        await orchestrator.start_detection()

        sent = [orchestrator.push_video_frame("a"), orchestrator.push_video_frame("b")]
        clock.now = 1.0
        sent.append(orchestrator.push_video_frame("c"))
        await settle(orchestrator)

        assert sent == [True, False, True]
        assert [r.image_base64 for r in script.calls["detection"]] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_detection_commands(self, orchestrator):
        assert await orchestrator.stop_detection() is False
        assert await orchestrator.start_detection()
        assert await orchestrator.start_detection() is False
        assert await orchestrator.stop_detection()
        assert orchestrator.push_video_frame("a") is False


@pytest.mark.integration
class TestShutdown:

    @pytest.mark.asyncio
    async def test_shutdown_from_recording(self, orchestrator):
        await orchestrator.start_recording()
        await orchestrator.start_detection()
        orchestrator.push_audio_frame(np.full(1600, 0.2))

        await orchestrator.shutdown()

        assert orchestrator.state == State.IDLE
        assert orchestrator.session is None
        assert not any(stage.ready for stage in orchestrator.stages.values())
        assert not orchestrator.gate.all_ready

    @pytest.mark.asyncio
    async def test_restart_after_shutdown(self, orchestrator):
        await orchestrator.shutdown()

        assert await orchestrator.start()
        assert orchestrator.state == State.READY

    @pytest.mark.asyncio
    async def test_status(self, orchestrator):
        await orchestrator.start_recording()
        orchestrator.push_audio_frame(np.full(1600, 0.2))
        await asyncio.sleep(0.01)

        status = orchestrator.get_status()

        assert status["state"] == "recording"
        assert status["readiness"]["all_ready"] is True
        assert status["session"]["frames_received"] == 1
        assert set(status["stages"]) == {"transcription", "keywords", "ideas", "summary", "detection"}


@pytest.mark.asyncio
async def test_events_published_to_broker(make_orchestrator):
    from unittest.mock import AsyncMock

    broker = AsyncMock()
    orchestrator = make_orchestrator(broker=broker)
    await orchestrator.start()
    await settle(orchestrator)

    published = [call.args[0].event_type for call in broker.publish_session_event.call_args_list]
    assert EventTypes.PIPELINE_READY in published
    await orchestrator.shutdown()
