"""
Change monitor: polls the transactions table and triggers detection passes.

The monitor owns the only scheduling loop. Each tick it counts the records,
compares the count with the previous observation, and runs a pass when the
table grew (GROWTH) or shrank (REPLACED). The first observation after start
is a baseline and never triggers.

Observation state lives on the ChangeMonitor instance and is lost on restart.
"""

from __future__ import annotations

import threading
from datetime import date, datetime
from typing import Callable, List, Optional

from aml_monitor.config import Settings, get_settings
from aml_monitor.domain.models import (
    AlertSummaryRow,
    DecisionKind,
    Observation,
    PassReason,
    TriggerDecision,
)
from aml_monitor.errors import PipelineError
from aml_monitor.orchestrator import ProcessingOrchestrator, utcnow
from aml_monitor.stores.abstract import AlertSink, CheckpointStore, RecordSource
from aml_monitor.utils.logging import get_logger

log = get_logger(__name__)


class ChangeMonitor:
    """
    Poll-driven trigger for the processing orchestrator.
    """

    def __init__(
        self,
        source: RecordSource,
        checkpoints: CheckpointStore,
        orchestrator: ProcessingOrchestrator,
        alerts: Optional[AlertSink] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.source = source
        self.checkpoints = checkpoints
        self.orchestrator = orchestrator
        self.alerts = alerts
        self.interval = self.settings.monitor_interval_seconds
        self.summary_every = self.settings.summary_every_ticks
        self._clock = clock

        self.last_row_count: Optional[int] = None
        self.last_processed_time: Optional[datetime] = None
        self.ticks = 0

    @classmethod
    def from_orchestrator(cls, orchestrator: ProcessingOrchestrator) -> "ChangeMonitor":
        """Build a monitor that shares the orchestrator's stores and settings."""
        return cls(
            source=orchestrator.source,
            checkpoints=orchestrator.checkpoints,
            orchestrator=orchestrator,
            alerts=orchestrator.alerts,
            settings=orchestrator.settings,
        )

    def observe(self) -> Observation:
        """
        Read the current record count and the checkpoint watermark.

        Raises SourceUnavailable when the count cannot be read. A watermark that
        cannot be read is reported as unset.
        """
        row_count = self.source.count()
        try:
            checkpoint = self.checkpoints.read(self.settings.process_name)
            last_processed = checkpoint.last_processed_timestamp if checkpoint else None
        except PipelineError as exc:
            log.warning(
                "Could not get last processed time, assuming first run",
                extra={"error": str(exc)},
            )
            last_processed = None
        return Observation(row_count=row_count, last_processed=last_processed)

    def observe_and_maybe_trigger(self) -> TriggerDecision:
        """
        Observe once and run a pass when the record count changed.
        """
        observation = self.observe()
        current = observation.row_count

        if self.last_row_count is None:
            self.last_row_count = current
            self.last_processed_time = observation.last_processed
            log.info(
                f"[MONITOR] Initial state: {current} rows, last processed: {observation.last_processed}",
                extra={"rows": current},
            )
            return TriggerDecision(kind=DecisionKind.NONE, row_count=current, baseline=True)

        if current == self.last_row_count:
            log.info(f"[MONITOR] No new data (current: {current} rows)", extra={"rows": current})
            return TriggerDecision(kind=DecisionKind.NONE, row_count=current)

        delta = current - self.last_row_count
        if delta > 0:
            reason = PassReason.GROWTH
            log.info(
                f"[MONITOR] New data detected! {delta} new rows (total: {current})",
                extra={"rows": current, "delta": delta},
            )
        else:
            reason = PassReason.REPLACED
            log.info(
                f"[MONITOR] Data replaced detected! New count: {current} (was: {self.last_row_count})",
                extra={"rows": current, "delta": delta},
            )

        decision = TriggerDecision(
            kind=DecisionKind.TRIGGERED, row_count=current, delta=delta, reason=reason
        )
        try:
            decision.result = self.orchestrator.run_pass(reason)
        except PipelineError as exc:
            # Keep the previous count so the next tick sees the same delta again.
            decision.error = f"{type(exc).__name__}: {exc}"
            log.error(
                f"[MONITOR] Failed to trigger processing: {exc}",
                extra={"reason": reason.value, "delta": delta},
            )
            return decision

        self.last_row_count = current
        self.last_processed_time = decision.result.new_watermark
        return decision

    def tick(self) -> Optional[TriggerDecision]:
        """
        One poll. Returns None when the record source could not be read or the
        check failed for any other pipeline reason.
        """
        self.ticks += 1
        try:
            return self.observe_and_maybe_trigger()
        except PipelineError as exc:
            log.error(
                f"[MONITOR] Check failed: {exc}",
                extra={"tick": self.ticks, "error_type": type(exc).__name__},
            )
            return None

    def alerts_summary(self, day: Optional[date] = None) -> List[AlertSummaryRow]:
        """
        Alert counts for `day` (default today) grouped by type and priority.
        """
        if self.alerts is None:
            return []
        day = day or self._clock().date()
        try:
            return self.alerts.summary_for(day)
        except PipelineError as exc:
            log.warning(f"[MONITOR] Could not read alert summary: {exc}")
            return []

    def log_alerts_summary(self) -> None:
        rows = self.alerts_summary()
        log.info("[MONITOR] Today's Alert Summary:")
        if not rows:
            log.info("[MONITOR]    No alerts generated today")
        for row in rows:
            log.info(
                f"[MONITOR]    {row.alert_type} ({row.priority.value}): {row.count} alerts",
                extra={"alert_type": row.alert_type, "priority": row.priority.value, "count": row.count},
            )

    def run(self, stop_event: threading.Event) -> None:
        """
        Poll until `stop_event` is set.

        A tick already in progress, including its pass, finishes before the loop
        exits; no tick starts after the event is observed.
        """
        log.info(
            f"[MONITOR] Starting AML monitor on {self.settings.transactions_table} "
            f"(interval {self.interval}s)",
            extra={"table": self.settings.transactions_table, "interval": self.interval},
        )
        if not stop_event.is_set():
            self.tick()
            self.log_alerts_summary()

        while not stop_event.wait(self.interval):
            self.tick()
            if self.summary_every > 0 and self.ticks % self.summary_every == 0:
                self.log_alerts_summary()

        log.info("[MONITOR] Monitor stopped", extra={"ticks": self.ticks})


__all__ = ["ChangeMonitor"]
