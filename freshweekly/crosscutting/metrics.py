import json
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class TierMetrics:
    """Metrics for one discovery tier."""
    tier: str
    artists_queried: int = 0
    candidates_offered: int = 0
    tracks_accepted: int = 0
    batches: int = 0
    duration_ms: int = 0

    @property
    def acceptance_rate(self) -> float:
        """Share of offered candidates that were accepted."""
        if self.candidates_offered == 0:
            return 0.0
        return self.tracks_accepted / self.candidates_offered


@dataclass
class RunMetrics:
    """Aggregated metrics for one generation run."""
    run_id: str
    source_playlist_id: str
    source_track_count: int = 0
    distinct_artists: int = 0
    seed_count: int = 0
    final_track_count: int = 0
    duration_ms: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    tiers: List[TierMetrics] = field(default_factory=list)

    @property
    def total_candidates(self) -> int:
        return sum(tier.candidates_offered for tier in self.tiers)


class MetricsCollector:
    """Collects metrics for a generation run.

    All updates happen on the run's event loop between awaits, so no locking.
    """

    def __init__(self, run_id: str, source_playlist_id: str):
        self.run_metrics = RunMetrics(run_id=run_id, source_playlist_id=source_playlist_id)
        self._current_tier: Optional[TierMetrics] = None
        self._start_monotonic: Optional[float] = None

    def start_run(self) -> None:
        """Mark run start."""
        self.run_metrics.start_time = datetime.now()
        self._start_monotonic = time.monotonic()

    def end_run(self, final_track_count: int = 0) -> None:
        """Mark run end."""
        self.run_metrics.end_time = datetime.now()
        self.run_metrics.final_track_count = final_track_count
        if self._start_monotonic is not None:
            self.run_metrics.duration_ms = int((time.monotonic() - self._start_monotonic) * 1000)

    def record_source(self, track_count: int, distinct_artists: int) -> None:
        self.run_metrics.source_track_count = track_count
        self.run_metrics.distinct_artists = distinct_artists

    def record_seeds(self, seed_count: int) -> None:
        self.run_metrics.seed_count = seed_count

    @contextmanager
    def tier_context(self, tier: str):
        """Context manager timing a discovery tier."""
        metrics = TierMetrics(tier=tier)
        self._current_tier = metrics
        started = time.monotonic()
        try:
            yield metrics
        finally:
            metrics.duration_ms = int((time.monotonic() - started) * 1000)
            self.run_metrics.tiers.append(metrics)
            self._current_tier = None

    def record_batch(self, artists: int, offered: int, accepted: int) -> None:
        """Record one collector batch against the current tier."""
        if self._current_tier is None:
            return
        self._current_tier.batches += 1
        self._current_tier.artists_queried += artists
        self._current_tier.candidates_offered += offered
        self._current_tier.tracks_accepted += accepted

    def get_tier(self, tier: str) -> Optional[TierMetrics]:
        for metrics in self.run_metrics.tiers:
            if metrics.tier == tier:
                return metrics
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for JSON serialization."""
        data = asdict(self.run_metrics)
        for key in ('start_time', 'end_time'):
            if data[key]:
                data[key] = data[key].isoformat()
        return data

    def save_to_file(self, file_path: str) -> None:
        """Save metrics to JSON file."""
        with open(file_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
