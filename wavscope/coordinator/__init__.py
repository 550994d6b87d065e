"""
Coordinator Module for wavscope

Runs the analysis pipeline in the background for a loaded track and
caches one artifact per visualization mode.

Quick Start:
    ```python
    from wavscope.coordinator import AnalysisCoordinator
    from wavscope.visualization import VisualizationMode

    coordinator = AnalysisCoordinator()
    coordinator.load_track("song.wav")
    # poll coordinator.get_status() until idle, then
    coordinator.request_visualization(VisualizationMode.TEMPO)
    ```

Or via CLI:
    ```bash
    python -m wavscope.coordinator song.wav --mode tempo
    ```

Components:
    - AnalysisCoordinator: State machine, cache and background runs
    - ProcessingStatus: Immutable status snapshot for pollers
    - CancelToken / run_indexed / ReadWriteLock: Worker primitives
"""

from .worker import (
    CancelToken,
    ProgressCallback,
    ProgressCounter,
    ReadWriteLock,
    chunk_bounds,
    run_indexed,
)

from .processor import (
    AnalysisCoordinator,
    ProcessingState,
    ProcessingStatus,
    format_eta,
)

__all__ = [
    # Workers
    "CancelToken",
    "ProgressCallback",
    "ProgressCounter",
    "ReadWriteLock",
    "chunk_bounds",
    "run_indexed",

    # Coordinator
    "AnalysisCoordinator",
    "ProcessingState",
    "ProcessingStatus",
    "format_eta",
]
