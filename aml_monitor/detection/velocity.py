"""
Velocity detector for the AML velocity monitor.

Flags card holders that perform many transactions in rapid succession:

- Records are grouped by entity and ordered by event time.
- The gap to the previous event is measured in whole minutes (truncated).
- An event is rapid when the gap to its previous or next event is within
  `rapid_window_minutes`, i.e. it belongs to a rapid-succession burst.
- Rapid events from the start of the lookback window onwards are counted per
  (entity, day); a day with at least `min_rapid_count` rapid events becomes
  an alert. Events stamped after `now` (clock skew between the database and
  this process) still count.

Gaps are computed over the records handed to a single call. Incremental
callers pass the earlier events of the same entity-days along with the new
ones; see `ProcessingOrchestrator`.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from aml_monitor.config import Settings
from aml_monitor.detection.abstract import AbstractDetector
from aml_monitor.domain.models import AlertRecord, Priority, TransactionRecord
from aml_monitor.errors import DetectionFailure


@dataclass(frozen=True)
class VelocityConfig:
    rapid_window_minutes: int = 5
    min_rapid_count: int = 5
    lookback_hours: int = 24
    points_per_event: int = 15
    score_floor: int = 60
    score_ceiling: int = 100
    high_priority_count: int = 10
    medium_priority_count: int = 7

    @classmethod
    def from_settings(cls, settings: Settings) -> "VelocityConfig":
        return cls(
            rapid_window_minutes=settings.rapid_window_minutes,
            min_rapid_count=settings.min_rapid_count,
            lookback_hours=settings.lookback_hours,
        )


@dataclass(frozen=True)
class FlaggedDay:
    entity_id: str
    alert_date: date
    rapid_count: int
    total_amount: Decimal


def _gap_minutes(previous: datetime, current: datetime) -> int:
    return int((current - previous).total_seconds() // 60)


def rapid_events(
    events: Sequence[TransactionRecord], window_minutes: int
) -> List[TransactionRecord]:
    """
    Return the members of rapid-succession bursts from one entity's time-ordered events.
    """
    gaps: List[Optional[int]] = [None]
    gaps.extend(
        _gap_minutes(prev.event_timestamp, cur.event_timestamp)
        for prev, cur in zip(events, events[1:])
    )
    gaps.append(None)

    rapid = []
    for index, event in enumerate(events):
        before, after = gaps[index], gaps[index + 1]
        if (before is not None and before <= window_minutes) or (
            after is not None and after <= window_minutes
        ):
            rapid.append(event)
    return rapid


class VelocityDetector(AbstractDetector):
    """
    Rapid-succession transaction detector.

    Pure with respect to its inputs: the output depends only on the records,
    the highest existing alert ID, and the processing time passed in.
    """

    name: str = "velocity"
    alert_type: str = "VELOCITY"

    def __init__(self, config: Optional[VelocityConfig] = None) -> None:
        self.config = config or VelocityConfig()

    def risk_score(self, rapid_count: int) -> int:
        cfg = self.config
        return min(max(rapid_count * cfg.points_per_event, cfg.score_floor), cfg.score_ceiling)

    def priority(self, rapid_count: int) -> Priority:
        if rapid_count >= self.config.high_priority_count:
            return Priority.HIGH
        if rapid_count >= self.config.medium_priority_count:
            return Priority.MEDIUM
        return Priority.LOW

    def describe(self, rapid_count: int) -> str:
        return (
            f"Rapid transactions detected: {rapid_count} transactions "
            f"within {self.config.rapid_window_minutes} minutes"
        )

    def flag(self, records: Iterable[TransactionRecord], now: datetime) -> List[FlaggedDay]:
        """
        Group, window, and threshold the records; unordered output.
        """
        cfg = self.config
        window_start = now - timedelta(hours=cfg.lookback_hours) if cfg.lookback_hours > 0 else None

        by_entity: Dict[str, List[TransactionRecord]] = defaultdict(list)
        for record in records:
            if record.event_timestamp.tzinfo is None:
                raise DetectionFailure(
                    f"Transaction {record.transaction_id} has a naive event timestamp"
                )
            by_entity[record.entity_id].append(record)

        flagged: List[FlaggedDay] = []
        for entity_id, events in by_entity.items():
            events.sort(key=lambda r: (r.event_timestamp, r.transaction_id))

            per_day: Dict[date, List[TransactionRecord]] = defaultdict(list)
            for event in rapid_events(events, cfg.rapid_window_minutes):
                if window_start is not None and event.event_timestamp < window_start:
                    continue
                per_day[event.event_timestamp.astimezone(timezone.utc).date()].append(event)

            for day, day_events in per_day.items():
                if len(day_events) >= cfg.min_rapid_count:
                    flagged.append(
                        FlaggedDay(
                            entity_id=entity_id,
                            alert_date=day,
                            rapid_count=len(day_events),
                            total_amount=sum((e.amount for e in day_events), Decimal("0")),
                        )
                    )
        return flagged

    def detect(
        self,
        records: Sequence[TransactionRecord],
        *,
        max_alert_id: int = 0,
        now: Optional[datetime] = None,
    ) -> List[AlertRecord]:
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            raise DetectionFailure("Processing time must be timezone-aware")

        try:
            flagged = self.flag(records, now)
        except DetectionFailure:
            raise
        except (TypeError, ValueError, AttributeError) as exc:
            raise DetectionFailure(f"Malformed transaction input: {exc}") from exc

        ordered = sorted(flagged, key=lambda f: (-f.rapid_count, f.entity_id, f.alert_date))
        return [
            AlertRecord(
                alert_id=max_alert_id + rank,
                entity_id=item.entity_id,
                alert_date=item.alert_date,
                alert_type=self.alert_type,
                risk_score=self.risk_score(item.rapid_count),
                description=self.describe(item.rapid_count),
                priority=self.priority(item.rapid_count),
                total_amount=item.total_amount,
                detection_date=now.astimezone(timezone.utc).date(),
                created_at=now,
                rapid_count=item.rapid_count,
            )
            for rank, item in enumerate(ordered, start=1)
        ]


__all__ = ["VelocityConfig", "VelocityDetector", "FlaggedDay", "rapid_events"]
