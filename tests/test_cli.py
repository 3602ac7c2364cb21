"""Tests for CLI interface functionality."""

import wave
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import numpy as np
import pytest

from local_captions.main import CaptionCLI, main
from local_captions.captioning.models import AudioSource, CaptionEntry


def write_wav(path: Path, amplitude: float = 0.2, seconds: float = 1.0) -> Path:
    pcm = np.full(int(16000 * seconds), int(amplitude * 32767), dtype=np.int16)
    with wave.open(str(path), "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(16000)
        wav_file.writeframes(pcm.tobytes())
    return path


def mock_service(captions: list[CaptionEntry] | None = None) -> Mock:
    service = Mock()
    service.is_available.return_value = True
    service.run = AsyncMock(return_value=captions or [])
    return service


@pytest.mark.unit
class TestCaptionCLI:
    """Test cases for the CaptionCLI class."""

    def test_cli_initialization_with_custom_service(self) -> None:
        """Test CLI initialization with custom service."""
        service = mock_service()
        cli = CaptionCLI(service=service)

        assert cli._service is service
        assert cli._caption_count == 0

    @pytest.mark.asyncio
    async def test_caption_file_success(self, tmp_path: Path) -> None:
        """Test a file is streamed through the service and summarized."""
        path = write_wav(tmp_path / "talk.wav")
        service = mock_service([CaptionEntry(text="hello there.", confidence=0.9)])
        cli = CaptionCLI(service=service)

        with patch("builtins.print") as mock_print:
            captions = await cli.caption_file(str(path))

        assert [c.text for c in captions] == ["hello there."]
        service.set_caption_callback.assert_called_once_with(cli._on_caption)
        service.run.assert_awaited_once()
        mock_print.assert_any_call(f"🎤 Captioning {path}...")
        mock_print.assert_any_call("✅ Done. 1 caption line(s).")

    @pytest.mark.asyncio
    async def test_caption_file_with_mixed_source(self, tmp_path: Path) -> None:
        """Test a second file is merged in through the source coordinator."""
        first = write_wav(tmp_path / "mic.wav")
        second = write_wav(tmp_path / "system.wav")
        seen = []

        async def consume(frames):
            async for frame in frames:
                seen.append(frame.source)
            return []

        service = mock_service()
        service.run = AsyncMock(side_effect=consume)
        cli = CaptionCLI(service=service)

        with patch("builtins.print"):
            await cli.caption_file(str(first), mix_path=str(second))

        assert seen.count(AudioSource.MICROPHONE) == 10
        assert seen.count(AudioSource.SYSTEM) == 10

    @pytest.mark.asyncio
    async def test_run_missing_file(self, tmp_path: Path) -> None:
        """Test unreadable input is reported and run fails."""
        cli = CaptionCLI(service=mock_service())

        with patch("builtins.print") as mock_print:
            completed = await cli.run(str(tmp_path / "missing.wav"))

        assert completed is False
        printed = " ".join(str(call.args[0]) for call in mock_print.call_args_list)
        assert "❌ Cannot read audio" in printed

    @pytest.mark.asyncio
    async def test_run_model_unavailable(self, tmp_path: Path) -> None:
        """Test a missing transcription model is reported."""
        service = mock_service()
        service.is_available.return_value = False
        cli = CaptionCLI(service=service)

        with patch("builtins.print") as mock_print:
            completed = await cli.run(str(write_wav(tmp_path / "talk.wav")))

        assert completed is False
        mock_print.assert_any_call(
            "❌ Captioning failed: Transcription model is not available"
        )
        service.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_with_keyboard_interrupt(self, tmp_path: Path) -> None:
        """Test graceful shutdown on KeyboardInterrupt."""
        service = mock_service()
        service.run = AsyncMock(side_effect=KeyboardInterrupt())
        cli = CaptionCLI(service=service)

        with patch("builtins.print") as mock_print:
            completed = await cli.run(str(write_wav(tmp_path / "talk.wav")))

        assert completed is True
        mock_print.assert_any_call("\n👋 Goodbye!")

    @pytest.mark.asyncio
    async def test_run_with_general_exception(self, tmp_path: Path) -> None:
        """Test handling of general exceptions during run."""
        service = mock_service()
        service.run = AsyncMock(side_effect=RuntimeError("Unexpected error"))
        cli = CaptionCLI(service=service)

        with patch("builtins.print") as mock_print:
            completed = await cli.run(str(write_wav(tmp_path / "talk.wav")))

        assert completed is False
        mock_print.assert_any_call("❌ Unexpected error: Unexpected error")


@pytest.mark.unit
class TestCaptionCLIDisplay:
    """Test cases for caption display in CLI interface."""

    def test_caption_with_confidence(self) -> None:
        """Test caption lines show a rounded confidence percentage."""
        cli = CaptionCLI(service=mock_service(), show_confidence_percentage=True)

        with patch("builtins.print") as mock_print:
            cli._on_caption(CaptionEntry(text="Hello world", confidence=0.954))

        assert cli._caption_count == 1
        mock_print.assert_called_once_with("[1] Hello world (95%)")

    def test_caption_without_confidence(self) -> None:
        """Test confidence display can be turned off."""
        cli = CaptionCLI(service=mock_service(), show_confidence_percentage=False)

        with patch("builtins.print") as mock_print:
            cli._on_caption(CaptionEntry(text="Hello world", confidence=0.95))

        mock_print.assert_called_once_with("[1] Hello world")

    def test_caption_with_unknown_confidence(self) -> None:
        """Test captions without a confidence print only the text."""
        cli = CaptionCLI(service=mock_service())

        with patch("builtins.print") as mock_print:
            cli._on_caption(CaptionEntry(text="Hello"))

        mock_print.assert_called_once_with("[1] Hello")

    def test_caption_numbering(self) -> None:
        """Test captions are numbered in order and blank lines are ignored."""
        cli = CaptionCLI(service=mock_service(), show_confidence_percentage=False)

        with patch("builtins.print") as mock_print:
            cli._on_caption(CaptionEntry(text="first"))
            cli._on_caption(CaptionEntry(text="   "))
            cli._on_caption(CaptionEntry(text="second"))

        assert [call.args[0] for call in mock_print.call_args_list] == [
            "[1] first",
            "[2] second",
        ]


@pytest.mark.unit
class TestMainFunction:
    """Test cases for the main function and entry point."""

    @pytest.mark.asyncio
    async def test_main_function_creates_cli_and_runs(self) -> None:
        """Test that main function creates CLI and runs it."""
        with patch("local_captions.main.CaptionCLI") as mock_cli_class:
            mock_cli = AsyncMock()
            mock_cli.run.return_value = True
            mock_cli_class.return_value = mock_cli

            completed = await main("talk.wav", strategy="window", realtime=True)

            assert completed is True
            assert mock_cli_class.call_args.kwargs["strategy"] == "window"
            mock_cli.run.assert_awaited_once_with(
                "talk.wav", realtime=True, mix_path=None
            )

    def test_cli_builds_service_from_options(self) -> None:
        """Test the CLI wires strategy, stabilizer and device into a service."""
        with patch("local_captions.main.WhisperTranscriber") as mock_transcriber:
            cli = CaptionCLI(strategy="window", stabilizer="prefix", force_cpu=True)

        assert mock_transcriber.call_args.kwargs["device"] == "cpu"
        assert cli._service.producer.name == "window"
        assert type(cli._service.stabilizer).__name__ == "LocalAgreementStabilizer"
