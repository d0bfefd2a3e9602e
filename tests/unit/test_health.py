"""Unit tests for the standings health reporter."""

import pytest

from tablekeeper.config.automation import HealthThresholds
from tablekeeper.errors import InputError
from tablekeeper.services.health import DEGRADED, HEALTHY, UNHEALTHY, HealthReporter


def finish(queue, league_id, error=None):
    queue.enqueue(league_id, 2024)
    job = queue.dequeue()
    if error is None:
        queue.complete(job.id, job.claim_token)
    else:
        queue.fail(job.id, error, job.claim_token)
    return job.id


@pytest.fixture
def thresholds():
    return HealthThresholds(
        pending_degraded=2,
        pending_unhealthy=4,
        failure_rate_degraded=0.2,
        failure_rate_unhealthy=0.5,
        recent_failures=5,
    )


class TestHealthReporter:
    """Test status classification and metrics."""

    def test_idle_queue_is_healthy(self, queue, thresholds):
        report = HealthReporter(queue, thresholds).report()
        assert report.status == HEALTHY
        assert report.reasons == []

    def test_pending_backlog_degrades_then_fails(self, queue, thresholds):
        reporter = HealthReporter(queue, thresholds)
        for league in range(3):
            queue.enqueue(league, 2024)
        assert reporter.report().status == DEGRADED

        for league in range(3, 5):
            queue.enqueue(league, 2024)
        assert reporter.report().status == UNHEALTHY

    def test_failure_rate_thresholds(self, queue, thresholds):
        reporter = HealthReporter(queue, thresholds)
        for league in range(3):
            finish(queue, league)
        finish(queue, 10, InputError("bad score"))

        report = reporter.report()
        assert report.failure_rate == pytest.approx(0.25)
        assert report.status == DEGRADED

        finish(queue, 11, InputError("bad score"))
        finish(queue, 12, InputError("bad score"))
        finish(queue, 13, InputError("bad score"))
        assert reporter.report().status == UNHEALTHY

    def test_paused_queue_is_degraded(self, queue, thresholds):
        queue.pause()
        report = HealthReporter(queue, thresholds).report()
        assert report.status == DEGRADED
        assert "queue paused" in report.reasons

    def test_report_includes_ages_and_failures(self, queue, clock, thresholds):
        failed_id = finish(queue, 1, InputError("bad score"))
        queue.enqueue(2, 2024)
        clock.advance(12)

        report = HealthReporter(queue, thresholds).report()

        assert report.pending_jobs[0]["ageSeconds"] == 12
        assert report.recent_failures[0]["jobId"] == failed_id
        assert report.recent_failures[0]["error"] == "bad score"

    def test_stuck_jobs_are_counted(self, queue, clock, thresholds):
        queue.enqueue(1, 2024)
        queue.dequeue()
        clock.advance(queue.stuck_timeout + 1)

        assert HealthReporter(queue, thresholds).report().stuck_jobs == 1

    def test_report_does_not_mutate_queue(self, queue, clock, thresholds):
        queue.enqueue(1, 2024)
        queue.dequeue()
        clock.advance(queue.stuck_timeout + 1)
        before = queue.state().counts

        HealthReporter(queue, thresholds).report()

        assert queue.state().counts == before

    def test_endpoint_shape(self, queue, thresholds):
        finish(queue, 2)
        queue.enqueue(1, 2024)

        payload = HealthReporter(queue, thresholds).to_endpoint()

        assert payload == {
            "status": HEALTHY,
            "metrics": {
                "pendingJobs": 1,
                "processingJobs": 0,
                "completedJobs": 1,
                "failedJobs": 0,
            },
        }

    def test_thresholds_from_yaml_section_ignore_unknown_keys(self):
        thresholds = HealthThresholds.from_dict({"pending_degraded": 7, "colour": "red"})
        assert thresholds.pending_degraded == 7
        assert thresholds.pending_unhealthy == HealthThresholds().pending_unhealthy
