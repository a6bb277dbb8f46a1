"""Tests for run statistics and summaries."""

from a11y_mcp.remediation.models import JobResult, Patch
from a11y_mcp.remediation.statistics import StatisticsTracker, build_summary


def make_patch(status, group_key="1.1.1", confidence=0.8, validated=None):
    return Patch(
        job_id="job-0",
        group_key=group_key,
        line_number=None if status == "failed" else 1,
        confidence=confidence,
        status=status,
        validated=validated,
    )


class TestStatisticsTracker:
    """Test run-level counters."""

    def test_counts_and_average(self):
        tracker = StatisticsTracker()
        tracker.start(total_jobs=3)
        tracker.record([
            JobResult(job_id="a", group_key="g", status="success", attempts=1, processing_ms=10.0),
            JobResult(job_id="b", group_key="g", status="failed", attempts=2, processing_ms=30.0),
            JobResult(job_id="c", group_key="g", status="failed", attempts=0),
        ])
        stats = tracker.finish()

        assert stats.total_jobs == 3
        assert stats.completed == 1
        assert stats.failed == 2
        # Jobs that never ran are left out of the average
        assert stats.average_processing_time_ms == 20.0
        assert stats.end_time >= stats.start_time
        assert tracker.total_processing_ms >= 0

    def test_to_dict_serializes_times(self):
        tracker = StatisticsTracker()
        tracker.start(total_jobs=0)
        data = tracker.finish().to_dict()
        assert isinstance(data["start_time"], str)
        assert isinstance(data["end_time"], str)


class TestBuildSummary:
    """Test patch aggregation."""

    def test_summary_counts(self):
        patches = [
            make_patch("success", confidence=0.9, validated=True),
            make_patch("merged", group_key="4.1.2", confidence=0.7, validated=True),
            make_patch("failed", group_key="2.4.4"),
            make_patch("needs_review"),
            make_patch("success", confidence=0.8, validated=False),
        ]
        summary = build_summary(patches, total_processing_ms=12.3456)

        assert summary["total"] == 5
        assert summary["successful"] == 3
        assert summary["merged"] == 1
        assert summary["failed"] == 1
        assert summary["needs_review"] == 1
        assert summary["stale"] == 1
        assert summary["average_confidence"] == 0.8
        assert summary["total_processing_time_ms"] == 12.35
        assert summary["by_type"]["1.1.1"] == {"total": 3, "successful": 2, "failed": 0}
        assert summary["by_type"]["2.4.4"]["failed"] == 1

    def test_empty(self):
        summary = build_summary([])
        assert summary["total"] == 0
        assert summary["average_confidence"] == 0.0
