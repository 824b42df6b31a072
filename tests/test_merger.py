import io

import pytest
from pydub import AudioSegment

from conftest import make_result
from narration_pipeline.errors import ConcatenationError, FormatMismatchError
from narration_pipeline.merger import concatenate_results


def test_concatenate_produces_single_container_with_probed_duration():
    results = [make_result(i, duration) for i, duration in enumerate([1000, 1500, 800])]

    artifact = concatenate_results(results)

    assert artifact.format == "wav"
    assert artifact.content_type == "audio/wav"
    assert artifact.chunk_count == 3
    assert artifact.audio_bytes[:4] == b"RIFF"
    assert artifact.audio_bytes.count(b"RIFF") == 1
    assert artifact.duration_seconds == pytest.approx(3.3, abs=0.01)
    assert artifact.chunk_durations == pytest.approx({0: 1.0, 1: 1.5, 2: 0.8})


def test_concatenate_inserts_silence(tmp_path):
    durations = [1000, 1500, 800]
    results = [make_result(i, duration) for i, duration in enumerate(durations)]
    silence_gap = 200

    artifact = concatenate_results(results, silence_gap_ms=silence_gap)
    output_path = artifact.write(tmp_path / "out" / "merged.wav")

    assert output_path.exists()
    merged = AudioSegment.from_file(output_path, format="wav")
    expected_duration = sum(durations) + silence_gap * (len(durations) - 1)
    assert abs(len(merged) - expected_duration) <= 50


def test_splice_preserves_order():
    results = [make_result(0, 100, value=1000), make_result(1, 100, value=-1000)]

    artifact = concatenate_results(results)

    merged = AudioSegment.from_file(io.BytesIO(artifact.audio_bytes), format="wav")
    samples = merged.get_array_of_samples()
    assert samples[0] == 1000
    assert samples[-1] == -1000


def test_mismatched_sample_rates_are_rejected():
    results = [make_result(0, frame_rate=24000), make_result(1, frame_rate=16000)]

    with pytest.raises(FormatMismatchError) as excinfo:
        concatenate_results(results)

    assert excinfo.value.chunk_index == 1
    assert excinfo.value.stage == "concatenation"


def test_mismatched_channels_are_rejected():
    results = [make_result(0, channels=1), make_result(1, channels=2)]

    with pytest.raises(FormatMismatchError):
        concatenate_results(results)


def test_out_of_order_results_are_rejected():
    results = [make_result(1), make_result(0)]

    with pytest.raises(ConcatenationError):
        concatenate_results(results)


def test_empty_results_and_unsupported_format_are_rejected():
    with pytest.raises(ConcatenationError):
        concatenate_results([])
    with pytest.raises(ConcatenationError):
        concatenate_results([make_result(0)], output_format="mp3")


def test_staged_files_are_removed_after_merge(tmp_path):
    staging = tmp_path / "chunks"
    results = [make_result(i) for i in range(3)]

    concatenate_results(results, staging_dir=staging)

    assert staging.exists()
    assert list(staging.iterdir()) == []


def test_staged_files_are_removed_on_failure(tmp_path):
    staging = tmp_path / "chunks"
    results = [make_result(0, frame_rate=24000), make_result(1, frame_rate=8000)]

    with pytest.raises(FormatMismatchError):
        concatenate_results(results, staging_dir=staging)

    assert list(staging.iterdir()) == []


def test_keep_staged_leaves_named_chunk_files(tmp_path):
    staging = tmp_path / "chunks"
    results = [make_result(i) for i in range(2)]

    concatenate_results(results, staging_dir=staging, keep_staged=True)

    assert sorted(path.name for path in staging.iterdir()) == ["chunk_000.wav", "chunk_001.wav"]
