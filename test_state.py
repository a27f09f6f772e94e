"""
Tests for the run status tracker.
"""

import unittest

from models import PipelineStage, RunStats, StageFailure
from state import InvalidTransition, ScrapeStatusTracker


class TestScrapeStatusTracker(unittest.TestCase):
    """Test run lifecycle and the stage graph."""

    def setUp(self):
        self.tracker = ScrapeStatusTracker()

    def test_create_run(self):
        """Test that a new run starts pending and running."""
        run_id = self.tracker.create_run("ats")
        run = self.tracker.get_run(run_id)
        self.assertEqual(run.id, run_id)
        self.assertEqual(run.status, "running")
        self.assertEqual(run.stage, PipelineStage.PENDING)
        self.assertEqual(run.mode, "ats")
        self.assertIsNotNone(run.started_at)
        self.assertIsNone(run.completed_at)

    def test_ids_are_unique(self):
        """Test that every run gets its own id."""
        ids = {self.tracker.create_run() for _ in range(20)}
        self.assertEqual(len(ids), 20)

    def test_stages_follow_graph(self):
        """Test the full happy path."""
        run_id = self.tracker.create_run()
        for stage in (
            PipelineStage.SCRAPING,
            PipelineStage.ENRICHING_URLS,
            PipelineStage.ENRICHING_AI,
            PipelineStage.REPAIRING_LOCATIONS,
        ):
            self.tracker.update_run(run_id, stage=stage)
        run = self.tracker.complete_run(run_id, RunStats(jobs_added=4))
        self.assertEqual(run.status, "completed")
        self.assertEqual(run.stage, PipelineStage.DONE)
        self.assertEqual(run.stats.jobs_added, 4)
        self.assertIsNotNone(run.completed_at)

    def test_stage_values_are_accepted(self):
        """Test that plain stage strings are coerced."""
        run_id = self.tracker.create_run()
        run = self.tracker.update_run(run_id, stage="scraping")
        self.assertEqual(run.stage, PipelineStage.SCRAPING)

    def test_skipping_a_stage_is_rejected(self):
        """Test that stages cannot be skipped."""
        run_id = self.tracker.create_run()
        with self.assertRaises(InvalidTransition):
            self.tracker.update_run(run_id, stage=PipelineStage.ENRICHING_AI)

    def test_moving_backwards_is_rejected(self):
        """Test that stages cannot move backwards."""
        run_id = self.tracker.create_run()
        self.tracker.update_run(run_id, stage=PipelineStage.SCRAPING)
        self.tracker.update_run(run_id, stage=PipelineStage.ENRICHING_URLS)
        with self.assertRaises(InvalidTransition):
            self.tracker.update_run(run_id, stage=PipelineStage.SCRAPING)

    def test_completing_early_is_rejected(self):
        """Test that done is only reachable from the last stage."""
        run_id = self.tracker.create_run()
        with self.assertRaises(InvalidTransition):
            self.tracker.complete_run(run_id)

    def test_any_stage_can_fail(self):
        """Test failing from a middle stage."""
        run_id = self.tracker.create_run()
        self.tracker.update_run(run_id, stage=PipelineStage.SCRAPING)
        failure = StageFailure(stage=PipelineStage.SCRAPING, kind="ScrapeStageError", message="boom", exit_code=2)
        run = self.tracker.fail_run(run_id, "boom", failure)
        self.assertEqual(run.status, "failed")
        self.assertEqual(run.stage, PipelineStage.FAILED)
        self.assertEqual(run.error, "boom")
        self.assertEqual(run.failure.exit_code, 2)

    def test_finished_runs_are_frozen(self):
        """Test that terminal runs cannot change."""
        run_id = self.tracker.create_run()
        self.tracker.fail_run(run_id, "boom")
        with self.assertRaises(InvalidTransition):
            self.tracker.update_run(run_id, error="other")
        with self.assertRaises(InvalidTransition):
            self.tracker.fail_run(run_id, "again")

    def test_unknown_run(self):
        """Test lookups and updates of unknown ids."""
        self.assertIsNone(self.tracker.get_run("missing"))
        with self.assertRaises(KeyError):
            self.tracker.update_run("missing", stage=PipelineStage.SCRAPING)

    def test_get_run_returns_a_copy(self):
        """Test that callers cannot mutate tracked state."""
        run_id = self.tracker.create_run()
        snapshot = self.tracker.get_run(run_id)
        snapshot.stats.failed_sources.append("lever:acme")
        self.assertEqual(self.tracker.get_run(run_id).stats.failed_sources, [])

    def test_oldest_runs_are_evicted(self):
        """Test the bounded history."""
        tracker = ScrapeStatusTracker(max_runs=2)
        first = tracker.create_run()
        second = tracker.create_run()
        third = tracker.create_run()
        self.assertIsNone(tracker.get_run(first))
        self.assertIsNotNone(tracker.get_run(second))
        self.assertIsNotNone(tracker.get_run(third))

    def test_clear(self):
        """Test clearing all runs."""
        run_id = self.tracker.create_run()
        self.tracker.clear()
        self.assertIsNone(self.tracker.get_run(run_id))


if __name__ == "__main__":
    unittest.main()
