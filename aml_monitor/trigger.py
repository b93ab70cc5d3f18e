"""
Event-driven entry point: run a pass when an insert notification arrives.

This is the push-based counterpart of the change monitor. A storage-side
notifier (e.g. a table-insert webhook or a message subscription) delivers a
JSON payload describing rows appended to a table; events for the monitored
transactions table with at least one inserted row run a GROWTH pass through
the same orchestrator the monitor uses.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from aml_monitor.config import Settings, get_settings
from aml_monitor.domain.models import PassReason, PassResult
from aml_monitor.errors import InvalidEvent
from aml_monitor.orchestrator import ProcessingOrchestrator
from aml_monitor.utils.logging import get_logger

log = get_logger(__name__)


class InsertEvent(BaseModel):
    """
    Notification that rows were appended to a table.
    """

    insert_id: str = Field("", alias="insertId")
    table_id: str = Field(..., alias="tableId")
    dataset_id: str = Field(..., alias="datasetId")
    project_id: str = Field("", alias="projectId")
    event_time: Optional[datetime] = Field(None, alias="eventTime")
    event_type: str = Field("", alias="eventType")
    num_rows_inserted: int = Field(0, alias="numRowsInserted", ge=0)

    model_config = {"frozen": True, "populate_by_name": True}


def parse_event(payload: Union[str, bytes, Mapping[str, Any]]) -> InsertEvent:
    try:
        if isinstance(payload, (str, bytes)):
            return InsertEvent.model_validate_json(payload)
        return InsertEvent.model_validate(payload)
    except (ValidationError, json.JSONDecodeError) as exc:
        raise InvalidEvent(f"Failed to parse event data: {exc}") from exc


def handle_insert_event(
    payload: Union[str, bytes, Mapping[str, Any]],
    orchestrator: ProcessingOrchestrator,
    settings: Optional[Settings] = None,
) -> Optional[PassResult]:
    """
    Run a GROWTH pass for an insert into the monitored table.

    Returns None when the event is skipped (another table, or no rows inserted).
    Pass errors, including AlreadyRunning, propagate to the caller.
    """
    settings = settings or get_settings()
    event = parse_event(payload)
    log.info(
        f"Insert event: {event.dataset_id}.{event.table_id} - {event.num_rows_inserted} rows added",
        extra={"insert_id": event.insert_id, "rows": event.num_rows_inserted},
    )

    if event.table_id != settings.transactions_table or event.dataset_id != settings.db_schema:
        log.info("Skipping - not our target table", extra={"table": event.table_id})
        return None
    if event.num_rows_inserted == 0:
        log.info("Skipping - no new rows added", extra={"table": event.table_id})
        return None

    return orchestrator.run_pass(PassReason.GROWTH)


__all__ = ["InsertEvent", "handle_insert_event", "parse_event"]
