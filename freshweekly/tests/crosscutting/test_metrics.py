import json

import pytest

from freshweekly.crosscutting.metrics import MetricsCollector, RunMetrics, TierMetrics


class TestTierMetrics:
    """Tests for TierMetrics class."""

    def test_acceptance_rate(self):
        tier = TierMetrics(tier="seed", candidates_offered=40, tracks_accepted=10)

        assert tier.acceptance_rate == 0.25

    def test_acceptance_rate_without_candidates(self):
        assert TierMetrics(tier="neighbor").acceptance_rate == 0.0


class TestRunMetrics:
    """Tests for RunMetrics class."""

    def test_total_candidates(self):
        metrics = RunMetrics(run_id="fw_1", source_playlist_id="src", tiers=[
            TierMetrics(tier="seed", candidates_offered=24),
            TierMetrics(tier="neighbor", candidates_offered=18),
        ])

        assert metrics.total_candidates == 42


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def setup_method(self):
        self.collector = MetricsCollector("fw_1", "src")

    def test_run_lifecycle(self):
        self.collector.start_run()
        self.collector.record_source(120, 35)
        self.collector.record_seeds(8)
        self.collector.end_run(final_track_count=30)

        run = self.collector.run_metrics
        assert run.source_track_count == 120
        assert run.distinct_artists == 35
        assert run.seed_count == 8
        assert run.final_track_count == 30
        assert run.start_time is not None
        assert run.end_time >= run.start_time
        assert run.duration_ms >= 0

    def test_batches_accumulate_within_tier(self):
        with self.collector.tier_context("fallback"):
            self.collector.record_batch(3, 18, 6)
            self.collector.record_batch(2, 12, 4)

        tier = self.collector.get_tier("fallback")
        assert tier.batches == 2
        assert tier.artists_queried == 5
        assert tier.candidates_offered == 30
        assert tier.tracks_accepted == 10

    def test_batch_outside_tier_is_ignored(self):
        self.collector.record_batch(3, 18, 6)

        assert self.collector.run_metrics.tiers == []

    def test_tier_recorded_even_when_it_fails(self):
        with pytest.raises(RuntimeError):
            with self.collector.tier_context("seed"):
                raise RuntimeError("fetch failed")

        assert self.collector.get_tier("seed") is not None

    def test_unknown_tier(self):
        assert self.collector.get_tier("neighbor") is None

    def test_to_dict_is_json_serializable(self):
        self.collector.start_run()
        with self.collector.tier_context("seed"):
            self.collector.record_batch(8, 48, 16)
        self.collector.end_run(16)

        data = self.collector.to_dict()

        assert data["run_id"] == "fw_1"
        assert isinstance(data["start_time"], str)
        assert data["tiers"][0]["tier"] == "seed"
        json.dumps(data)

    def test_save_to_file(self, tmp_path):
        self.collector.start_run()
        self.collector.end_run(10)
        path = tmp_path / "metrics.json"

        self.collector.save_to_file(str(path))

        saved = json.loads(path.read_text())
        assert saved["source_playlist_id"] == "src"
        assert saved["final_track_count"] == 10
