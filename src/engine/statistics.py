"""Aggregate figures over a set of training sessions."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from src.domain.session import SessionStatus, TrainingSession


@dataclass
class RatingSummary:
    average: float = 0.0
    minimum: int = 0
    maximum: int = 0
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "average_rating": self.average,
            "min_rating": self.minimum,
            "max_rating": self.maximum,
            "total_ratings": self.count,
        }


@dataclass
class SessionStatistics:
    total_sessions: int = 0
    completed_sessions: int = 0
    cancelled_sessions: int = 0
    status_counts: Dict[str, int] = field(default_factory=dict)
    ratings: RatingSummary = field(default_factory=RatingSummary)
    trainer_counts: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_sessions": self.total_sessions,
            "completed_sessions": self.completed_sessions,
            "cancelled_sessions": self.cancelled_sessions,
            "average_rating": self.ratings.average,
            "status_counts": self.status_counts,
            "rating_stats": self.ratings.to_dict(),
            "trainer_stats": self.trainer_counts,
        }


def summarize_ratings(sessions: Iterable[TrainingSession]) -> RatingSummary:
    ratings = [
        s.rating for s in sessions if s.status == SessionStatus.COMPLETED and s.rating is not None
    ]
    if not ratings:
        return RatingSummary()
    return RatingSummary(
        average=round(sum(ratings) / len(ratings), 1),
        minimum=min(ratings),
        maximum=max(ratings),
        count=len(ratings),
    )


def compute_statistics(
    sessions: Iterable[TrainingSession],
    trainer_names: Optional[Dict[str, str]] = None,
) -> SessionStatistics:
    """
    Args:
        sessions: Sessions already filtered to the caller's scope
        trainer_names: Optional trainer_id -> display name for trainer_stats
    """
    sessions = list(sessions)
    by_status = Counter(s.status.value for s in sessions)
    by_trainer = Counter(s.trainer_id for s in sessions)
    names = trainer_names or {}

    # Most frequent first
    status_counts = dict(sorted(by_status.items(), key=lambda kv: (-kv[1], kv[0])))
    trainer_counts = [
        {"trainer_id": trainer_id, "trainer_name": names.get(trainer_id, trainer_id), "count": count}
        for trainer_id, count in sorted(by_trainer.items(), key=lambda kv: (-kv[1], kv[0]))
    ]

    return SessionStatistics(
        total_sessions=len(sessions),
        completed_sessions=by_status.get(SessionStatus.COMPLETED.value, 0),
        cancelled_sessions=by_status.get(SessionStatus.CANCELLED.value, 0),
        status_counts=status_counts,
        ratings=summarize_ratings(sessions),
        trainer_counts=trainer_counts,
    )
