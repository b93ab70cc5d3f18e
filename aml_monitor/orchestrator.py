"""
Orchestrator for checkpointed incremental detection passes.

Usage (example from CLI):
    from aml_monitor.orchestrator import ProcessingOrchestrator

    orchestrator = ProcessingOrchestrator.from_settings()
    result = orchestrator.run_pass("MANUAL")
    print(result.records_processed, result.alerts_generated, result.new_watermark)

A pass:
1. acquires the checkpoint by moving it to PROCESSING (fails fast with
   AlreadyRunning when another pass holds it),
2. fetches records newer than the watermark, plus the already-processed
   events of the same entities on the days those records fall on,
3. runs the detector over both and keeps the alerts for the touched
   (entity, day) pairs,
4. writes the alerts; an alert for a day that already has one replaces it
   when its rapid count is higher,
5. moves the checkpoint to COMPLETED with the advanced watermark.

Any failure after step 1 marks the checkpoint FAILED, leaves the watermark where
it was, and re-raises to the caller. There is no retry here; the caller decides.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from aml_monitor.config import Settings, get_settings
from aml_monitor.detection.abstract import Detector, assign_alert_ids
from aml_monitor.detection.velocity import VelocityConfig, VelocityDetector
from aml_monitor.domain.models import (
    AlertRecord,
    Checkpoint,
    CheckpointStatus,
    PassReason,
    PassResult,
    TransactionRecord,
)
from aml_monitor.errors import AlreadyRunning, Conflict, DetectionFailure
from aml_monitor.stores.abstract import AlertSink, CheckpointStore, RecordSource
from aml_monitor.utils.logging import get_logger
from aml_monitor.utils.profiler import ProfileStats, profile_block

log = get_logger(__name__)

ACQUIRABLE = frozenset(
    {CheckpointStatus.IDLE, CheckpointStatus.COMPLETED, CheckpointStatus.FAILED}
)
HELD = frozenset({CheckpointStatus.PROCESSING})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessingOrchestrator:
    """
    Runs one detection pass at a time under the checkpoint guard.
    """

    def __init__(
        self,
        source: RecordSource,
        checkpoints: CheckpointStore,
        alerts: AlertSink,
        detector: Optional[Detector] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.source = source
        self.checkpoints = checkpoints
        self.alerts = alerts
        self.detector = detector or VelocityDetector(VelocityConfig.from_settings(self.settings))
        self.process_name = self.settings.process_name
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ProcessingOrchestrator":
        """Wire the orchestrator to the PostgreSQL stores."""
        from aml_monitor.stores.postgres import (
            PostgresAlertStore,
            PostgresCheckpointStore,
            PostgresRecordSource,
        )

        settings = settings or get_settings()
        return cls(
            source=PostgresRecordSource(settings),
            checkpoints=PostgresCheckpointStore(settings),
            alerts=PostgresAlertStore(settings),
            settings=settings,
        )

    def run_pass(self, reason: Union[PassReason, str] = PassReason.MANUAL) -> PassResult:
        """
        Run one complete detection pass. Blocks until the pass finishes.

        Raises
        ------
        AlreadyRunning
            Another pass holds the checkpoint.
        SourceUnavailable, Conflict, PartialFailure, DetectionFailure
            The pass failed; the checkpoint is left FAILED with its watermark unchanged.
        """
        reason = PassReason(reason)
        name = self.process_name
        log.info(f"[PASS START] {name}", extra={"process_name": name, "reason": reason.value})

        with profile_block(name) as stats:
            checkpoint = self._acquire()
            try:
                result = self._execute(checkpoint, reason, stats)
            except Exception as exc:  # noqa: BLE001 - every failure marks the checkpoint FAILED
                self._mark_failed(exc, stats)
                log.error(
                    f"[PASS FAILED] {name}: {exc}",
                    extra={
                        "process_name": name,
                        "reason": reason.value,
                        "error_type": type(exc).__name__,
                        "duration": round(_elapsed(stats), 3),
                    },
                )
                raise

        result.duration_seconds = round(stats.duration_seconds, 3)
        result.peak_rss_bytes = stats.peak_rss_bytes
        label = "[PASS COMPLETE]" if result.records_processed else "[PASS NO-OP]"
        log.info(
            f"{label} {name}",
            extra={
                "process_name": name,
                "reason": reason.value,
                "records": result.records_processed,
                "alerts": result.alerts_generated,
                "watermark": str(result.new_watermark),
                "duration": result.duration_seconds,
            },
        )
        return result

    def reset_checkpoint(self) -> Checkpoint:
        """
        Clear the watermark so the next pass reprocesses everything.

        Intended for operators after a destructive reload of the transactions
        table. Refused while a pass holds the checkpoint.
        """
        try:
            checkpoint = self.checkpoints.upsert(
                self.process_name,
                {
                    "last_processed_timestamp": None,
                    "status": CheckpointStatus.IDLE,
                    "last_error": None,
                },
                expected_prior_status=ACQUIRABLE,
            )
        except Conflict as exc:
            raise AlreadyRunning(self.process_name) from exc
        log.warning(f"[CHECKPOINT RESET] {self.process_name}", extra={"process_name": self.process_name})
        return checkpoint

    def _acquire(self) -> Checkpoint:
        stale_after = self.settings.stale_processing_after_seconds
        stale_before = self._clock() - timedelta(seconds=stale_after) if stale_after > 0 else None
        try:
            return self.checkpoints.upsert(
                self.process_name,
                {"status": CheckpointStatus.PROCESSING},
                expected_prior_status=ACQUIRABLE,
                stale_before=stale_before,
            )
        except Conflict as exc:
            log.info(
                f"[PASS REJECTED] {self.process_name} is already processing",
                extra={"process_name": self.process_name},
            )
            raise AlreadyRunning(self.process_name) from exc

    def _execute(self, checkpoint: Checkpoint, reason: PassReason, stats: ProfileStats) -> PassResult:
        previous = checkpoint.last_processed_timestamp
        watermark = checkpoint.watermark
        records = self.source.query_new_since(watermark)

        if not records:
            self._complete(
                {
                    "alerts_generated": 0,
                    "processing_duration_seconds": _elapsed(stats),
                    "last_run_date": self._clock().date(),
                    "last_error": None,
                    "status": CheckpointStatus.COMPLETED,
                }
            )
            return PassResult(
                process_name=self.process_name,
                reason=reason,
                status=CheckpointStatus.COMPLETED,
                previous_watermark=previous,
                new_watermark=previous,
            )

        history = self._history(checkpoint, records)
        alerts = self._detect(records, history, watermark)
        written = self._write_alerts(alerts)
        new_watermark = max(watermark, max(r.event_timestamp for r in records))

        self._complete(
            {
                "last_processed_timestamp": new_watermark,
                "total_records_processed": checkpoint.total_records_processed + len(records),
                "alerts_generated": written,
                "processing_duration_seconds": _elapsed(stats),
                "last_run_date": self._clock().date(),
                "last_error": None,
                "status": CheckpointStatus.COMPLETED,
            }
        )
        return PassResult(
            process_name=self.process_name,
            reason=reason,
            status=CheckpointStatus.COMPLETED,
            records_processed=len(records),
            alerts_generated=written,
            previous_watermark=previous,
            new_watermark=new_watermark,
        )

    def _history(
        self, checkpoint: Checkpoint, records: Sequence[TransactionRecord]
    ) -> List[TransactionRecord]:
        """
        Already-processed events of the entities in `records`, from the start of
        the earliest day those records can affect up to the watermark.
        """
        if checkpoint.last_processed_timestamp is None:
            return []
        reach = self._reach()
        start = min(_day_start(r.event_timestamp - reach) for r in records) - reach
        history = self.source.query_entity_history(
            {r.entity_id for r in records}, start, checkpoint.last_processed_timestamp
        )
        log.debug(
            "Loaded earlier events for touched entities",
            extra={"process_name": self.process_name, "rows": len(history), "start": str(start)},
        )
        return history

    def _reach(self) -> timedelta:
        # Gaps are truncated to whole minutes, so a neighbour up to one minute
        # past the window still counts as rapid.
        return timedelta(minutes=self.settings.rapid_window_minutes + 1)

    def _detect(
        self,
        records: Sequence[TransactionRecord],
        history: Sequence[TransactionRecord],
        watermark: datetime,
    ) -> List[AlertRecord]:
        max_alert_id = self.alerts.max_alert_id()
        try:
            alerts = self.detector.detect(
                [*history, *records], max_alert_id=max_alert_id, now=self._clock()
            )
        except DetectionFailure:
            raise
        except Exception as exc:  # noqa: BLE001 - any detector crash is a detection failure
            raise DetectionFailure(f"{self.detector.name} detector failed: {exc}") from exc
        reach = self._reach()
        touched = set()
        for record in records:
            touched.add((record.entity_id, _day_start(record.event_timestamp).date()))
            touched.add((record.entity_id, _day_start(record.event_timestamp - reach).date()))
        alerts = [a for a in alerts if (a.entity_id, a.alert_date) in touched]
        return [
            alert.model_copy(update={"source_watermark": watermark})
            for alert in assign_alert_ids(alerts, max_alert_id)
        ]

    def _write_alerts(self, alerts: List[AlertRecord]) -> int:
        if not alerts:
            return 0
        try:
            return self.alerts.insert_all(alerts)
        except Conflict as exc:
            log.warning(
                "[ALERT ID CONFLICT] reallocating identifiers once",
                extra={"process_name": self.process_name, "error": str(exc)},
            )
        return self.alerts.insert_all(assign_alert_ids(alerts, self.alerts.max_alert_id()))

    def _complete(self, fields: Dict[str, Any]) -> Checkpoint:
        return self.checkpoints.upsert(self.process_name, fields, expected_prior_status=HELD)

    def _mark_failed(self, exc: BaseException, stats: ProfileStats) -> None:
        try:
            self.checkpoints.upsert(
                self.process_name,
                {
                    "status": CheckpointStatus.FAILED,
                    "last_error": f"{type(exc).__name__}: {exc}",
                    "processing_duration_seconds": _elapsed(stats),
                },
                expected_prior_status=HELD,
            )
        except Exception as mark_exc:  # noqa: BLE001 - the pass error is the one re-raised
            log.warning(
                f"Could not mark {self.process_name} as FAILED: {mark_exc}",
                extra={"process_name": self.process_name},
            )


def _elapsed(stats: ProfileStats) -> float:
    return time.perf_counter() - stats.start_ts


def _day_start(moment: datetime) -> datetime:
    """Midnight UTC of the day `moment` falls on."""
    return moment.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


__all__ = ["ProcessingOrchestrator", "ACQUIRABLE", "HELD", "utcnow"]
