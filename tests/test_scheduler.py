import threading

import pytest

from conftest import ToneEngine
from narration_pipeline.errors import (
    InputValidationError,
    NoContentError,
    RunCancelledError,
    SynthesisError,
)
from narration_pipeline.scheduler import JobState, SynthesisJob, SynthesisScheduler
from narration_pipeline.split_text import TextChunk, chunks_from_texts
from narration_pipeline.tts_engine import MockTtsEngine, VoiceParams

TEXTS = [f"Chunk number {i}." for i in range(5)]


def test_results_are_returned_in_index_order_despite_out_of_order_completion():
    chunk3_done = threading.Event()
    engine = ToneEngine(hold={TEXTS[0]: chunk3_done}, on_done={TEXTS[3]: chunk3_done})
    scheduler = SynthesisScheduler(engine, concurrency=3)

    results = scheduler.run(chunks_from_texts(TEXTS))

    assert [result.index for result in results] == [0, 1, 2, 3, 4]
    assert engine.completed.index(TEXTS[3]) < engine.completed.index(TEXTS[0])
    assert sorted(engine.requested) == sorted(TEXTS)


def test_result_bytes_do_not_depend_on_worker_count():
    serial = SynthesisScheduler(ToneEngine(), concurrency=1).run(chunks_from_texts(TEXTS))
    parallel = SynthesisScheduler(ToneEngine(), concurrency=4).run(chunks_from_texts(TEXTS))

    assert [r.audio_bytes for r in serial] == [r.audio_bytes for r in parallel]


def test_each_chunk_is_requested_exactly_once():
    engine = MockTtsEngine()
    texts = [f"Sentence {i}." for i in range(20)]

    results = SynthesisScheduler(engine, concurrency=6).run(chunks_from_texts(texts))

    assert len(results) == 20
    assert engine.requests_made == 20


def test_result_carries_audio_format():
    results = SynthesisScheduler(MockTtsEngine(), VoiceParams(sample_rate=22050)).run(
        chunks_from_texts(["Hello."])
    )

    result = results[0]
    assert result.sample_rate == 22050
    assert result.channels == 1
    assert result.sample_width == 2
    assert result.duration_seconds == pytest.approx(0.26, abs=0.01)


def test_single_failure_aborts_the_run(network_failure):
    engine = ToneEngine(fail_on={TEXTS[2]: network_failure})
    scheduler = SynthesisScheduler(engine, concurrency=2)

    with pytest.raises(SynthesisError) as excinfo:
        scheduler.run(chunks_from_texts(TEXTS[:4]))

    assert excinfo.value.chunk_index == 2
    assert excinfo.value.kind == "network"
    assert excinfo.value.stage == "synthesis"
    assert "chunk 2" in str(excinfo.value)


def test_no_new_chunks_are_claimed_after_failure(network_failure):
    engine = ToneEngine(fail_on={TEXTS[0]: network_failure})

    with pytest.raises(SynthesisError):
        SynthesisScheduler(engine, concurrency=1).run(chunks_from_texts(TEXTS))

    assert engine.requested == [TEXTS[0]]


def test_unexpected_exceptions_are_wrapped():
    engine = ToneEngine(fail_on={TEXTS[1]: RuntimeError("boom")})

    with pytest.raises(SynthesisError) as excinfo:
        SynthesisScheduler(engine, concurrency=2).run(chunks_from_texts(TEXTS[:3]))

    assert excinfo.value.chunk_index == 1
    assert excinfo.value.kind == "unknown"
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_progress_is_reported_once_per_chunk_and_is_monotonic():
    events = []
    scheduler = SynthesisScheduler(ToneEngine(), concurrency=3, progress_callback=events.append)

    scheduler.run(chunks_from_texts(TEXTS))

    assert len(events) == len(TEXTS)
    fractions = [event.fraction for event in events]
    assert fractions == sorted(fractions)
    assert fractions[-1] == 1.0
    assert sorted(event.chunk_index for event in events) == [0, 1, 2, 3, 4]


def test_blank_chunks_are_skipped_but_counted():
    engine = MockTtsEngine()
    events = []
    chunks = chunks_from_texts(["Hello.", "   ", "World."])

    results = SynthesisScheduler(engine, progress_callback=events.append).run(chunks)

    assert [result.index for result in results] == [0, 2]
    assert engine.requests_made == 2
    assert events[-1].completed == 3


def test_empty_or_blank_input_is_rejected_before_any_request():
    engine = MockTtsEngine()
    scheduler = SynthesisScheduler(engine)

    with pytest.raises(NoContentError):
        scheduler.run([])
    with pytest.raises(NoContentError):
        scheduler.run(chunks_from_texts([" ", "\n"]))
    assert engine.requests_made == 0


def test_oversized_chunk_is_rejected_before_any_request():
    engine = MockTtsEngine()
    chunks = [TextChunk(0, "fine"), TextChunk(1, "x" * 2001)]

    with pytest.raises(InputValidationError):
        SynthesisScheduler(engine).run(chunks)
    assert engine.requests_made == 0


def test_invalid_concurrency_is_rejected():
    with pytest.raises(InputValidationError):
        SynthesisScheduler(MockTtsEngine(), concurrency=0)


def test_cancel_before_start_makes_no_requests():
    engine = MockTtsEngine()
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RunCancelledError):
        SynthesisScheduler(engine, cancel_event=cancel).run(chunks_from_texts(TEXTS))
    assert engine.requests_made == 0


def test_cancel_during_run_stops_claiming():
    cancel = threading.Event()
    engine = ToneEngine(on_done={TEXTS[0]: cancel})

    with pytest.raises(RunCancelledError):
        SynthesisScheduler(engine, concurrency=1, cancel_event=cancel).run(chunks_from_texts(TEXTS))
    assert engine.requested == [TEXTS[0]]


def test_request_timeout_aborts_the_run():
    release = threading.Event()
    engine = ToneEngine(hold={TEXTS[1]: release})
    scheduler = SynthesisScheduler(engine, concurrency=2, request_timeout=0.2)

    try:
        with pytest.raises(SynthesisError) as excinfo:
            scheduler.run(chunks_from_texts(TEXTS[:3]))
    finally:
        release.set()

    assert excinfo.value.kind == "timeout"
    assert excinfo.value.chunk_index == 1


def test_job_transitions_are_enforced():
    job = SynthesisJob(TextChunk(0, "text"))
    job.transition(JobState.IN_FLIGHT)
    assert job.started_at is not None
    job.transition(JobState.DONE)

    with pytest.raises(RuntimeError):
        job.transition(JobState.IN_FLIGHT)
