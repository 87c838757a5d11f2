"""
Tests for the job tracker.

These tests verify:
1. Status classification is total and follows the marker precedence
2. At most one job is tracked per run, and its title never changes
3. Each status class drives the right stage transition
4. The download hand-off happens at most once per run, never after Failed
5. Read failures are absorbed; overlapping ticks are skipped
6. The poll loop stops on resolution, on stop() and on its attempt cap
"""

import logging
import threading

import pytest

from conftest import FakeDriver, jobs, wait_for

from reconpipe.collaborators import DriverUnavailableError
from reconpipe.events import EventStep
from reconpipe.pipeline import PipelineStage, StageStatus
from reconpipe.tracker import (
    JobObservation,
    JobSnapshot,
    JobStatusClass,
    JobTracker,
    PollLoop,
    PollTimeoutError,
    classify_status,
)
from reconpipe.tracker.models import PollOutcome


# -----------------------------------------------------------------------------
# Classification
# -----------------------------------------------------------------------------

class TestClassifyStatus:
    """Tests for classify_status."""

    @pytest.mark.parametrize("text,expected", [
        (None, JobStatusClass.COMPLETED),
        ("", JobStatusClass.COMPLETED),
        ("   ", JobStatusClass.COMPLETED),
        ("Queuing..", JobStatusClass.QUEUED),
        ("Processing..", JobStatusClass.PROCESSING),
        ("Failed", JobStatusClass.FAILED),
        ("Upload paused", JobStatusClass.UNKNOWN),
    ])
    def test_markers(self, text, expected):
        assert classify_status(text) == expected

    def test_failed_takes_precedence(self):
        assert classify_status("Processing Failed") == JobStatusClass.FAILED
        assert classify_status("Queuing - Failed") == JobStatusClass.FAILED

    def test_matching_is_case_sensitive(self):
        assert classify_status("processing") == JobStatusClass.UNKNOWN
        assert classify_status("FAILED") == JobStatusClass.UNKNOWN

    def test_explicit_class_wins(self):
        assert classify_status("Processing..", explicit=JobStatusClass.COMPLETED) == JobStatusClass.COMPLETED

    def test_observation_classify_uses_explicit(self):
        job = JobObservation(title="Scan", status_text="Failed", status_class=JobStatusClass.QUEUED)
        assert job.classify() == JobStatusClass.QUEUED

    def test_snapshot_first_in_progress_skips_finished_jobs(self):
        snapshot = JobSnapshot(jobs=jobs(("Old", None), ("Broken", "Failed"), ("New", "Queuing..")))
        assert snapshot.first_in_progress().title == "New"

    def test_snapshot_find_is_exact(self):
        snapshot = JobSnapshot(jobs=jobs(("Scan 10", "Processing.."), ("Scan 1", None)))
        assert snapshot.find("Scan 1").status_text is None
        assert snapshot.find("scan 1") is None


# -----------------------------------------------------------------------------
# Tracker ticks
# -----------------------------------------------------------------------------

class HandOff:
    """Records download hand-offs."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def __call__(self, run):
        self.calls.append(run.run_id)
        if self.error:
            raise self.error


def make_tracker(machine, job_lists, hand_off=None, **kwargs):
    driver = FakeDriver(job_lists=job_lists)
    machine.advance(PipelineStage.CAPTURE)
    return JobTracker(driver, machine, on_completed=hand_off, **kwargs)


class TestJobTrackerAdoption:
    """Tests for adopting the job to track."""

    def test_no_job_in_progress(self, machine):
        tracker = make_tracker(machine, [jobs(("Old", None))])

        tracker.poll()

        assert tracker.last_outcome == PollOutcome.NO_JOB
        assert machine.run.tracked_job_title is None
        assert machine.current_stage == PipelineStage.CAPTURE

    def test_adopts_first_in_progress_job(self, machine, recorder):
        tracker = make_tracker(machine, [jobs(("Old", None), ("Scan 7", "Queuing.."), ("Scan 8", "Processing.."))])

        tracker.poll()

        assert tracker.last_outcome == PollOutcome.ADOPTED
        assert machine.run.tracked_job_title == "Scan 7"
        assert machine.current_stage == PipelineStage.PROCESS
        assert recorder.count(EventStep.PROCESSING) == 1

    def test_tracked_title_never_changes(self, machine):
        tracker = make_tracker(machine, [
            jobs(("Scan 7", "Queuing..")),
            jobs(("Scan 9", "Processing.."), ("Scan 7", "Queuing..")),
            jobs(("Scan 9", "Processing..")),
        ])

        for _ in range(3):
            tracker.poll()

        assert machine.run.tracked_job_title == "Scan 7"
        assert tracker.last_outcome == PollOutcome.MISSING


class TestJobTrackerLifecycle:
    """Tests for acting on the tracked job's status."""

    def test_processing_many_ticks_single_event(self, machine, recorder):
        tracker = make_tracker(machine, [jobs(("Scan", "Processing.."))])

        for _ in range(20):
            tracker.poll()

        assert recorder.count(EventStep.PROCESSING) == 1
        assert tracker.last_outcome == PollOutcome.PROCESSING

    def test_queuing_then_processing_then_completed(self, machine, recorder):
        hand_off = HandOff()
        tracker = make_tracker(machine, [
            jobs(("Scan", "Queuing..")),
            jobs(("Scan", "Queuing..")),
            jobs(("Scan", "Processing..")),
            jobs(("Scan", "Processing..")),
            jobs(("Scan", None)),
        ], hand_off=hand_off)

        for _ in range(5):
            tracker.poll()

        assert recorder.steps() == [EventStep.CAPTURE, EventStep.PROCESSING, EventStep.DOWNLOAD]
        assert hand_off.calls == [machine.run.run_id]
        assert machine.current_stage == PipelineStage.DOWNLOAD
        assert tracker.finished

    def test_completed_hand_off_exactly_once(self, machine):
        hand_off = HandOff()
        tracker = make_tracker(machine, [jobs(("Scan", "Processing..")), jobs(("Scan", None))], hand_off=hand_off)

        for _ in range(10):
            tracker.poll()
        # A fresh tracker on the same run must not hand off again
        JobTracker(tracker.driver, machine, on_completed=hand_off).poll()

        assert len(hand_off.calls) == 1

    def test_failed_job_fails_run_without_download(self, machine, recorder):
        hand_off = HandOff()
        tracker = make_tracker(machine, [
            jobs(("Scan", "Processing..")),
            jobs(("Scan", "Failed")),
            jobs(("Scan", None)),
        ], hand_off=hand_off)

        for _ in range(3):
            tracker.poll()

        assert machine.run.is_failed
        assert hand_off.calls == []
        assert recorder.count(EventStep.ERROR) == 1
        assert "Failed" in recorder.last().message
        assert tracker.last_outcome == PollOutcome.IDLE

    def test_missing_tracked_job_keeps_polling(self, machine):
        tracker = make_tracker(machine, [jobs(("Scan", "Processing..")), [], [], jobs(("Scan", "Processing.."))])

        tracker.poll()
        tracker.poll()
        tracker.poll()
        assert tracker.missing_ticks == 2
        assert machine.current_stage == PipelineStage.PROCESS

        tracker.poll()
        assert tracker.missing_ticks == 0

    def test_unknown_status_waits(self, machine):
        tracker = make_tracker(machine, [jobs(("Scan", "Queuing..")), jobs(("Scan", "Paused"))])

        tracker.poll()
        tracker.poll()

        assert tracker.last_outcome == PollOutcome.WAITING
        assert machine.current_stage == PipelineStage.PROCESS

    def test_hand_off_error_fails_run(self, machine, recorder):
        tracker = make_tracker(
            machine,
            [jobs(("Scan", "Processing..")), jobs(("Scan", None))],
            hand_off=HandOff(error=RuntimeError("export button missing")),
        )

        tracker.poll()
        tracker.poll()

        assert machine.run.is_failed
        assert recorder.last().message == "Download failed: export button missing"

    def test_reset_during_read_drops_snapshot(self, machine):
        tracker = make_tracker(machine, [])

        def read_then_reset():
            machine.reset()
            return jobs(("Scan", "Processing.."))

        tracker.driver.job_lists = [read_then_reset]
        tracker.poll()

        assert tracker.last_outcome == PollOutcome.STALE
        assert machine.run.tracked_job_title is None
        assert machine.current_stage == PipelineStage.AUTHENTICATE

    def test_download_never_after_failure(self, machine):
        """For every short status script, hand-off happens at most once and never after Failed."""
        statuses = ["Queuing..", "Processing..", "Failed", None]
        hand_off = HandOff()

        for first in statuses:
            for second in statuses:
                for third in statuses:
                    machine.reset()
                    hand_off.calls.clear()
                    script = [jobs(("Scan", "Queuing.."))] + [jobs(("Scan", s)) for s in (first, second, third)]
                    tracker = make_tracker(machine, script, hand_off=hand_off)
                    for _ in range(len(script)):
                        tracker.poll()

                    assert len(hand_off.calls) <= 1
                    if machine.run.is_failed:
                        assert hand_off.calls == []


class TestJobTrackerErrors:
    """Tests for read failures and overlapping ticks."""

    def test_read_errors_absorbed_with_single_warning(self, machine, caplog):
        error = DriverUnavailableError("page not loaded")
        tracker = make_tracker(machine, [error, error, error, error, error, jobs(("Scan", "Processing.."))])

        with caplog.at_level(logging.INFO):
            for _ in range(5):
                assert tracker.poll() is None

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert tracker.consecutive_errors == 5
        assert not machine.run.is_failed

        tracker.poll()
        assert tracker.consecutive_errors == 0
        assert machine.current_stage == PipelineStage.PROCESS

    def test_overlapping_tick_is_skipped(self, machine):
        entered = threading.Event()
        release = threading.Event()

        def slow_read():
            entered.set()
            release.wait(5)
            return jobs(("Scan", "Processing.."))

        tracker = make_tracker(machine, [slow_read])
        worker = threading.Thread(target=tracker.poll)
        worker.start()
        assert entered.wait(5)

        assert tracker.is_reloading
        assert tracker.poll() is None
        assert tracker.last_outcome == PollOutcome.SKIPPED

        release.set()
        worker.join(5)
        assert not tracker.is_reloading
        assert tracker.driver.count("list_jobs") == 1

    def test_reset_clears_counters(self, machine):
        tracker = make_tracker(machine, [DriverUnavailableError("x")])
        tracker.poll()
        tracker.reset()
        assert tracker.consecutive_errors == 0
        assert tracker.finished is False
        assert tracker.last_outcome is None


# -----------------------------------------------------------------------------
# Poll loop
# -----------------------------------------------------------------------------

class TestPollLoop:
    """Tests for the background poll loop."""

    def test_loop_stops_when_job_completes(self, machine):
        hand_off = HandOff()
        tracker = make_tracker(machine, [jobs(("Scan", "Processing..")), jobs(("Scan", "Processing..")), jobs(("Scan", None))], hand_off=hand_off)
        loop = PollLoop(tracker, interval=0.01, max_attempts=100)

        loop.start()
        assert wait_for(lambda: not loop.is_running)

        assert loop.attempts == 3
        assert hand_off.calls == [machine.run.run_id]

    def test_attempt_cap_reports_timeout(self, machine):
        timeouts = []
        tracker = make_tracker(machine, [jobs(("Scan", "Processing.."))])
        loop = PollLoop(tracker, interval=0.01, max_attempts=4, on_timeout=timeouts.append)

        loop.start()
        assert wait_for(lambda: not loop.is_running)

        assert len(timeouts) == 1
        assert isinstance(timeouts[0], PollTimeoutError)
        assert timeouts[0].attempts == 4
        assert "did not complete processing" in str(timeouts[0])

    def test_stop_joins_thread(self, machine):
        tracker = make_tracker(machine, [jobs(("Scan", "Processing.."))])
        loop = PollLoop(tracker, interval=10.0, max_attempts=100)

        loop.start()
        assert wait_for(lambda: loop.attempts >= 1)
        loop.stop(timeout=5)

        assert not loop.is_running

    def test_stop_from_loop_thread_does_not_deadlock(self, machine):
        tracker = make_tracker(machine, [jobs(("Scan", "Processing.."))])
        loop = PollLoop(tracker, interval=0.01, max_attempts=2)
        loop.on_timeout = lambda error: loop.stop()

        loop.start()
        assert wait_for(lambda: not loop.is_running)

    def test_restart_resets_attempts(self, machine):
        tracker = make_tracker(machine, [jobs(("Scan", "Processing.."))])
        loop = PollLoop(tracker, interval=0.01, max_attempts=3)

        loop.start()
        assert wait_for(lambda: not loop.is_running)
        loop.start()
        assert wait_for(lambda: not loop.is_running)

        assert loop.attempts == 3

    def test_tick_exception_does_not_kill_loop(self, machine):
        tracker = make_tracker(machine, [jobs(("Scan", "Processing.."))])
        calls = []

        def flaky_poll():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("unexpected")

        tracker.poll = flaky_poll
        loop = PollLoop(tracker, interval=0.01, max_attempts=3)

        loop.start()
        assert wait_for(lambda: not loop.is_running)
        assert len(calls) == 3
