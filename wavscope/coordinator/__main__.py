"""
Entry point for running a one-shot analysis as a module.

Usage:
    python -m wavscope.coordinator FILE_OR_URL [--mode MODE] [--config FILE] [--verbose]
"""

import argparse
import logging
import sys
import time
from typing import Optional

from ..config import AnalysisConfig
from ..config_loader import ConfigLoadError, load_analysis_config
from ..visualization import VisualizationMode
from .processor import AnalysisCoordinator, ProcessingStatus

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def configure_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Root logging setup: INFO (DEBUG if verbose) to stderr, plus an optional file."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


def wait_for_idle(
    coordinator: AnalysisCoordinator,
    poll_interval: float = 0.1,
    show_progress: bool = True,
) -> ProcessingStatus:
    """Poll until the coordinator returns to IDLE, echoing progress lines."""
    last_message = None
    while True:
        status = coordinator.get_status()
        if status.is_idle:
            return status
        if show_progress and status.message != last_message:
            print(f"   [{status.progress:5.1%}] {status.message}")
            last_message = status.message
        time.sleep(poll_interval)


def summarize(coordinator: AnalysisCoordinator, mode: VisualizationMode) -> None:
    metadata = coordinator.metadata
    model = coordinator.audio_model
    print()
    if metadata is not None:
        print(f"   Format:      {metadata.format}")
        print(f"   Sample rate: {metadata.sample_rate} Hz")
        print(f"   Channels:    {metadata.channels}")
        print(f"   Duration:    {metadata.duration:.2f}s")
    if model is None:
        return
    if model.has_spectrum:
        print(f"   Frames:      {model.num_frames} x {model.spectrogram.shape[1]} bins")
    if model.has_beats:
        print(f"   Tempo:       {model.estimated_tempo_bpm:.1f} BPM")
        print(f"   Beats:       {len(model.beat_times())}")
    print(f"   Cached:      {', '.join(m.label for m in coordinator.cached_modes())}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="wavscope one-shot analysis runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m wavscope.coordinator song.wav --mode tempo
    python -m wavscope.coordinator https://example.com/loop.flac --mode spectrogram -v
        """
    )

    parser.add_argument(
        "source",
        help="Audio file path or http(s) URL"
    )

    parser.add_argument(
        "--mode", "-m",
        default=VisualizationMode.WAVEFORM.label,
        choices=[m.label for m in VisualizationMode],
        help="Visualization to prepare (default: waveform)"
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="YAML/JSON file with analysis overrides"
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Worker pool size per stage (default: CPU count)"
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write logs to this file"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args(argv)

    try:
        config = AnalysisConfig.from_env()
        if args.config:
            config = load_analysis_config(args.config, base=config)
        overrides = {}
        if args.workers is not None:
            overrides["max_workers"] = args.workers
        if args.verbose:
            overrides["verbose"] = True
        if args.log_file:
            overrides["log_file"] = args.log_file
        config = config.with_overrides(overrides)
    except (ConfigLoadError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(config.verbose, config.log_file)
    mode = VisualizationMode.parse(args.mode)

    print(f"🎵 wavscope: {args.source}")
    with AnalysisCoordinator(config) as coordinator:
        try:
            coordinator.load_track(args.source)
            status = wait_for_idle(coordinator)
            print(f"   {status.message}")
            if coordinator.metadata is None:
                return 1

            print(f"   {coordinator.request_visualization(mode)}")
            status = wait_for_idle(coordinator)
            print(f"   {status.message}")
            if mode not in coordinator.cached_modes():
                return 1
        except KeyboardInterrupt:
            coordinator.cancel_processing()
            print("\n   Processing cancelled")
            return 130

        summarize(coordinator, mode)
    return 0


if __name__ == "__main__":
    sys.exit(main())
