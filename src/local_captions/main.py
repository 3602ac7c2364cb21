"""Command-line interface for live captioning of recorded audio."""

import argparse
import asyncio
import logging
import sys
from collections.abc import AsyncIterator

from .captioning.audio_source import WavFileFrameSource
from .captioning.config import DEFAULT_DEVICE, DEFAULT_MODEL_SIZE, CaptionSettings
from .captioning.exceptions import AudioSourceError, CaptioningError
from .captioning.logging_utils import configure_logging
from .captioning.models import AudioFrame, AudioSource, CaptionEntry, StabilizedResult
from .captioning.service import STABILIZERS, STRATEGIES, CaptionService
from .captioning.source_coordinator import SourceCoordinator
from .captioning.transcriber import WhisperTranscriber

logger = logging.getLogger(__name__)


class CaptionCLI:
    """Command-line interface for the caption service."""

    def __init__(
        self,
        service: CaptionService | None = None,
        strategy: str = "segment",
        stabilizer: str = "overlap",
        model_size: str = DEFAULT_MODEL_SIZE,
        force_cpu: bool = False,
        clean_windows: bool = False,
        show_confidence_percentage: bool = True,
    ) -> None:
        """
        Initialize the CLI.

        Args:
            service: Optional CaptionService instance. If None, creates a new one.
            strategy: Buffering strategy ("segment" or "window")
            stabilizer: Stabilizer variant ("overlap" or "prefix")
            model_size: Whisper model size
            force_cpu: Whether to force CPU-only mode
            clean_windows: Strip silence from windows before transcription
            show_confidence_percentage: Whether to show confidence percentages in output
        """
        if service is None:
            transcriber = WhisperTranscriber(
                model_size=model_size,
                device=DEFAULT_DEVICE if force_cpu else "auto",
            )
            service = CaptionService(
                transcriber,
                strategy=strategy,
                stabilizer=stabilizer,
                settings=CaptionSettings(clean_windows=clean_windows),
            )
        self._service = service
        self._caption_count = 0
        self._show_confidence_percentage = show_confidence_percentage

    def _on_caption(self, entry: CaptionEntry) -> None:
        """
        Print a finalized caption line.

        Args:
            entry: Finalized caption entry
        """
        if not entry.text.strip():
            return

        self._caption_count += 1

        if self._show_confidence_percentage and entry.confidence is not None:
            confidence_percent = round(entry.confidence * 100)
            print(f"[{self._caption_count}] {entry.text} ({confidence_percent}%)")
        else:
            print(f"[{self._caption_count}] {entry.text}")

    def _on_result(self, result: StabilizedResult) -> None:
        if result.new_words:
            logger.debug(f"… {result.stabilized_text}")

    def _build_stream(
        self, path: str, realtime: bool, mix_path: str | None
    ) -> tuple[AsyncIterator[AudioFrame], SourceCoordinator | None]:
        primary = WavFileFrameSource(path, source=AudioSource.MICROPHONE, realtime=realtime)
        primary.load()
        if mix_path is None:
            return primary.stream(), None

        secondary = WavFileFrameSource(mix_path, source=AudioSource.SYSTEM, realtime=realtime)
        secondary.load()

        coordinator = SourceCoordinator(close_when_exhausted=True)
        coordinator.register_source(AudioSource.MICROPHONE, primary.stream)
        coordinator.register_source(AudioSource.SYSTEM, secondary.stream)
        coordinator.enable(AudioSource.MICROPHONE)
        coordinator.enable(AudioSource.SYSTEM)
        return coordinator.frames(), coordinator

    async def caption_file(
        self, path: str, realtime: bool = False, mix_path: str | None = None
    ) -> list[CaptionEntry]:
        """
        Caption a WAV file, optionally mixed with a second one.

        Args:
            path: Primary WAV file
            realtime: Feed frames at capture speed
            mix_path: Optional second WAV file fed as system audio

        Returns:
            Finalized caption entries

        Raises:
            AudioSourceError: If an input file cannot be read
        """
        if not self._service.is_available():
            raise CaptioningError("Transcription model is not available")

        self._service.set_caption_callback(self._on_caption)
        self._service.set_result_callback(self._on_result)

        print(f"🎤 Captioning {path}...")
        frames, coordinator = self._build_stream(path, realtime, mix_path)
        try:
            captions = await self._service.run(frames)
        finally:
            if coordinator is not None:
                await coordinator.close()

        print(f"✅ Done. {len(captions)} caption line(s).")
        return captions

    async def run(
        self, path: str, realtime: bool = False, mix_path: str | None = None
    ) -> bool:
        """
        Main CLI run.

        Handles startup, captioning and graceful shutdown.

        Returns:
            True if the file was captioned without errors
        """
        try:
            await self.caption_file(path, realtime=realtime, mix_path=mix_path)
            return True
        except (KeyboardInterrupt, asyncio.CancelledError):
            print("\n👋 Goodbye!")
            return True
        except AudioSourceError as e:
            print(f"❌ Cannot read audio: {e}")
        except CaptioningError as e:
            print(f"❌ Captioning failed: {e}")
        except Exception as e:
            print(f"❌ Unexpected error: {e}")
        return False


async def main(
    path: str,
    strategy: str = "segment",
    stabilizer: str = "overlap",
    model_size: str = DEFAULT_MODEL_SIZE,
    force_cpu: bool = False,
    clean_windows: bool = False,
    realtime: bool = False,
    mix_path: str | None = None,
    show_confidence_percentage: bool = True,
) -> bool:
    """Main entry point for the CLI application."""
    cli = CaptionCLI(
        strategy=strategy,
        stabilizer=stabilizer,
        model_size=model_size,
        force_cpu=force_cpu,
        clean_windows=clean_windows,
        show_confidence_percentage=show_confidence_percentage,
    )
    return await cli.run(path, realtime=realtime, mix_path=mix_path)


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Live Captions CLI - Stable real-time captions using local Whisper models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  local-captions talk.wav                              # Segment strategy, overlap stabilizer
  local-captions talk.wav --strategy window            # Overlapping 3s windows
  local-captions talk.wav --stabilizer prefix          # LocalAgreement prefix variant
  local-captions talk.wav --strategy window --clean-windows
  local-captions talk.wav --mix meeting.wav            # Merge a second source
  local-captions talk.wav --realtime -v                # Capture-speed playback, verbose
  local-captions --reset-model-cache                   # Clear model cache

Controls:
  Ctrl+C    - Stop and exit gracefully
        """,
    )

    parser.add_argument(
        "audio_file",
        nargs="?",
        metavar="FILE",
        help="WAV file to caption",
    )

    parser.add_argument(
        "--strategy",
        choices=STRATEGIES,
        default="segment",
        help="Buffering strategy: silence-triggered segments or sliding windows",
    )

    parser.add_argument(
        "--stabilizer",
        choices=STABILIZERS,
        default="overlap",
        help="Caption stabilizer: word-level overlap or prefix agreement",
    )

    parser.add_argument(
        "--model-size",
        default=DEFAULT_MODEL_SIZE,
        help=f"Whisper model size (default: {DEFAULT_MODEL_SIZE})",
    )

    parser.add_argument(
        "--mix",
        type=str,
        default=None,
        metavar="FILE",
        help="Second WAV file merged in as system audio",
    )

    parser.add_argument(
        "--realtime",
        action="store_true",
        help="Feed frames at capture speed instead of as fast as possible",
    )

    parser.add_argument(
        "--clean-windows",
        action="store_true",
        help="Strip silence from sliding windows before transcription",
    )

    parser.add_argument(
        "--reset-model-cache",
        action="store_true",
        help="Clear Whisper model cache and re-download models on next use",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging and debug information",
    )

    parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable trace logging (most verbose, includes all debug info)",
    )

    parser.add_argument(
        "--force-cpu",
        action="store_true",
        help="Force CPU-only mode, disable GPU/CUDA acceleration",
    )

    parser.add_argument(
        "--no-confidence",
        action="store_true",
        help="Hide confidence percentages in caption output",
    )

    return parser


def reset_model_cache() -> bool:
    """
    Reset the model cache by clearing downloaded models.

    Returns:
        True if cache was cleared successfully, False otherwise
    """
    try:
        transcriber = WhisperTranscriber()
        return transcriber.clear_model_cache()
    except Exception as e:
        logging.error(f"Error during model cache reset: {e}")
        return False


def handle_arguments(args: argparse.Namespace) -> tuple[bool, bool]:
    """
    Handle parsed command-line arguments.

    Args:
        args: Parsed arguments from argparse

    Returns:
        Tuple of (success, should_continue):
        - success: True if all operations succeeded, False if any failed
        - should_continue: True if execution should continue, False if it should stop
    """
    configure_logging(verbose=args.verbose, trace=args.trace)

    if args.reset_model_cache:
        try:
            if reset_model_cache():
                print("✅ Model cache cleared successfully.")
            else:
                print("❌ Failed to clear model cache.")
                return False, False
        except Exception as e:
            print(f"❌ Error clearing model cache: {e}")
            return False, False
        # Cache reset alone is a complete run
        return True, args.audio_file is not None

    if args.audio_file is None:
        print("❌ No audio file given. Use --help for usage.")
        return False, False

    return True, True


def cli_entry_with_args() -> None:
    """CLI entry point with argument parsing."""
    parser = create_argument_parser()

    try:
        args = parser.parse_args()

        success, should_continue = handle_arguments(args)

        if not success:
            sys.exit(1)

        if not should_continue:
            sys.exit(0)

        completed = asyncio.run(
            main(
                args.audio_file,
                strategy=args.strategy,
                stabilizer=args.stabilizer,
                model_size=args.model_size,
                force_cpu=args.force_cpu,
                clean_windows=args.clean_windows,
                realtime=args.realtime,
                mix_path=args.mix,
                show_confidence_percentage=not args.no_confidence,
            )
        )
        if not completed:
            sys.exit(1)

    except KeyboardInterrupt:
        pass  # Graceful shutdown
    except SystemExit:
        # Re-raise SystemExit (from argparse help, etc.)
        raise
    except Exception:
        sys.exit(1)


if __name__ == "__main__":
    cli_entry_with_args()
