"""Run statistics and result summaries."""

from datetime import datetime, timezone

from .models import JobResult, Patch, Statistics


class StatisticsTracker:
    """Accumulates counts and timings for one remediation run."""

    def __init__(self):
        self.statistics = Statistics()

    def start(self, total_jobs: int = 0) -> None:
        self.statistics = Statistics(total_jobs=total_jobs, start_time=datetime.now(timezone.utc))

    def record(self, results: list[JobResult]) -> None:
        """Count terminal job outcomes and average their processing time."""
        self.statistics.completed = sum(1 for r in results if r.status == "success")
        self.statistics.failed = sum(1 for r in results if r.status == "failed")
        timed = [r.processing_ms for r in results if r.attempts > 0]
        self.statistics.average_processing_time_ms = sum(timed) / len(timed) if timed else 0.0

    def finish(self) -> Statistics:
        self.statistics.end_time = datetime.now(timezone.utc)
        return self.statistics

    @property
    def total_processing_ms(self) -> float:
        stats = self.statistics
        if not stats.start_time or not stats.end_time:
            return 0.0
        return (stats.end_time - stats.start_time).total_seconds() * 1000


def build_summary(patches: list[Patch], total_processing_ms: float = 0.0) -> dict:
    """Aggregate patch outcomes by status and group.

    Merged patches also count as successful; patches with stale context are
    counted under ``stale``.
    """
    summary = {
        "total": len(patches),
        "successful": 0,
        "failed": 0,
        "merged": 0,
        "needs_review": 0,
        "warnings": 0,
        "stale": 0,
        "by_type": {},
        "average_confidence": 0.0,
        "total_processing_time_ms": round(total_processing_ms, 2),
    }

    confidences = []
    for patch in patches:
        if patch.status in ("success", "merged"):
            summary["successful"] += 1
            if patch.status == "merged":
                summary["merged"] += 1
            confidences.append(patch.confidence)
        elif patch.status == "failed":
            summary["failed"] += 1
        elif patch.status == "needs_review":
            summary["needs_review"] += 1
        elif patch.status == "warning":
            summary["warnings"] += 1

        if patch.validated is False and patch.status != "failed":
            summary["stale"] += 1

        by_type = summary["by_type"].setdefault(patch.group_key, {"total": 0, "successful": 0, "failed": 0})
        by_type["total"] += 1
        if patch.status in ("success", "merged"):
            by_type["successful"] += 1
        elif patch.status == "failed":
            by_type["failed"] += 1

    if confidences:
        summary["average_confidence"] = round(sum(confidences) / len(confidences), 2)

    return summary
