"""Tests for WhisperTranscriber class."""

from pathlib import Path
from unittest.mock import Mock, patch

import numpy as np
import pytest

from local_captions.captioning.exceptions import TranscriptionError
from local_captions.captioning.transcriber import WhisperTranscriber

# Patch target for the faster_whisper module as imported by the transcriber
FASTER_WHISPER_PATCH = "local_captions.captioning.transcriber.faster_whisper"
CACHE_DIR_PATCH = "local_captions.captioning.transcriber.get_whisper_cache_dir"


def make_segment(
    text: str, avg_logprob: float = -0.1, start: float = 0.0, end: float = 1.0, words=None
) -> Mock:
    return Mock(text=text, avg_logprob=avg_logprob, start=start, end=end, words=words or [])


def make_word(word: str, start: float, end: float, probability: float) -> Mock:
    return Mock(word=word, start=start, end=end, probability=probability)


@pytest.mark.unit
class TestWhisperTranscriber:
    """Test cases for WhisperTranscriber class."""

    @pytest.fixture(autouse=True)
    def cache_dir(self, tmp_path: Path):
        """Keep model downloads out of the home directory."""
        with patch(CACHE_DIR_PATCH, return_value=tmp_path / "whisper"):
            yield tmp_path / "whisper"

    def test_transcriber_initialization_default(self) -> None:
        """Test WhisperTranscriber can be initialized with default parameters."""
        transcriber = WhisperTranscriber()

        assert transcriber.model_size == "small"
        assert transcriber.device == "cpu"
        assert transcriber.compute_type == "int8"

    def test_is_available_when_model_loads(self) -> None:
        """Test is_available returns True when the model loads."""
        with patch(FASTER_WHISPER_PATCH) as mock_fw:
            transcriber = WhisperTranscriber(model_size="tiny")

            assert transcriber.is_available() is True
            mock_fw.WhisperModel.assert_called_once()
            assert mock_fw.WhisperModel.call_args.args[0] == "tiny"

    def test_is_available_when_model_fails(self) -> None:
        """Test is_available returns False when loading raises."""
        with patch(FASTER_WHISPER_PATCH) as mock_fw:
            mock_fw.WhisperModel.side_effect = Exception("Model not found")

            assert WhisperTranscriber().is_available() is False

    def test_is_available_without_library(self) -> None:
        """Test is_available returns False when faster-whisper is missing."""
        with patch(FASTER_WHISPER_PATCH, None):
            assert WhisperTranscriber().is_available() is False

    def test_model_loaded_once(self) -> None:
        """Test the model is created lazily and cached."""
        with patch(FASTER_WHISPER_PATCH) as mock_fw:
            transcriber = WhisperTranscriber()
            transcriber.is_available()
            transcriber.is_available()

            assert mock_fw.WhisperModel.call_count == 1
            assert transcriber.get_model_info()["model_loaded"] is True

    @pytest.mark.asyncio
    async def test_transcribe_successful(self) -> None:
        """Test transcription returns text, confidence and word timings."""
        words = [
            make_word(" Hello", 0.0, 0.4, 0.95),
            make_word(" world.", 0.4, 0.9, 0.85),
        ]
        with patch(FASTER_WHISPER_PATCH) as mock_fw:
            mock_model = mock_fw.WhisperModel.return_value
            mock_model.transcribe.return_value = (
                iter([make_segment(" Hello world.", words=words)]),
                Mock(),
            )

            output = await WhisperTranscriber().transcribe(np.zeros(16000, dtype=np.float32))

        assert output.text == "Hello world."
        assert output.confidence == 1.0
        assert [w.text for w in output.words] == ["Hello", "world."]
        assert output.words[1].start_ms == pytest.approx(400.0)
        assert output.words[1].end_ms == pytest.approx(900.0)
        assert output.words[0].confidence == pytest.approx(0.95)

        kwargs = mock_model.transcribe.call_args.kwargs
        assert kwargs["word_timestamps"] is True
        assert kwargs["condition_on_previous_text"] is False

    @pytest.mark.asyncio
    async def test_transcribe_empty_audio(self) -> None:
        """Test empty audio returns an empty output without loading the model."""
        with patch(FASTER_WHISPER_PATCH) as mock_fw:
            output = await WhisperTranscriber().transcribe(np.zeros(0, dtype=np.float32))

            mock_fw.WhisperModel.assert_not_called()

        assert output.text == ""
        assert output.confidence == 0.0

    @pytest.mark.asyncio
    async def test_transcribe_model_unavailable(self) -> None:
        """Test transcription raises when no model can be loaded."""
        with patch(FASTER_WHISPER_PATCH, None):
            with pytest.raises(TranscriptionError, match="not available"):
                await WhisperTranscriber().transcribe(np.ones(1600, dtype=np.float32))

    @pytest.mark.asyncio
    async def test_transcribe_inference_failure(self) -> None:
        """Test engine errors are wrapped in TranscriptionError."""
        with patch(FASTER_WHISPER_PATCH) as mock_fw:
            mock_fw.WhisperModel.return_value.transcribe.side_effect = RuntimeError("boom")

            with pytest.raises(TranscriptionError, match="boom"):
                await WhisperTranscriber().transcribe(np.ones(1600, dtype=np.float32))

    def test_calculate_confidence_weighted_by_duration(self) -> None:
        """Test avg_logprob is weighted by segment duration and normalized."""
        transcriber = WhisperTranscriber()
        segments = [
            make_segment("a", avg_logprob=-0.1, start=0.0, end=3.0),
            make_segment("b", avg_logprob=-2.0, start=3.0, end=4.0),
        ]

        confidence = transcriber._calculate_confidence(segments)

        expected_logprob = (-0.1 * 3 + -2.0 * 1) / 4
        assert confidence == pytest.approx((expected_logprob + 2.0) / 1.9)

    def test_calculate_confidence_empty(self) -> None:
        """Test no segments gives zero confidence."""
        assert WhisperTranscriber()._calculate_confidence([]) == 0.0

    def test_post_process_text(self) -> None:
        """Test whitespace is collapsed and trimmed."""
        transcriber = WhisperTranscriber()
        assert transcriber._post_process_text("  hello \n  world ") == "hello world"
        assert transcriber._post_process_text("") == ""

    def test_clear_model_cache(self, cache_dir: Path) -> None:
        """Test clearing the cache removes downloads and unloads the model."""
        cache_dir.mkdir(parents=True)
        (cache_dir / "model.bin").write_bytes(b"weights")
        with patch(FASTER_WHISPER_PATCH):
            transcriber = WhisperTranscriber()
            transcriber.is_available()

            assert transcriber.clear_model_cache() is True

        assert cache_dir.exists()
        assert not (cache_dir / "model.bin").exists()
        assert transcriber.get_model_info()["model_loaded"] is False
