"""
Abstract detector interfaces for the AML velocity monitor.

Concrete detectors (e.g., velocity) implement the Detector protocol: a pure
transform from a batch of transaction records to a list of alert records
with identifiers already assigned.
"""

from __future__ import annotations

import abc
from datetime import datetime
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from aml_monitor.domain.models import AlertRecord, TransactionRecord


@runtime_checkable
class Detector(Protocol):
    """
    Common interface all detectors must implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    alert_type : str
        The alert type written for every alert this detector produces.
    """

    name: str
    alert_type: str

    def detect(
        self,
        records: Sequence[TransactionRecord],
        *,
        max_alert_id: int = 0,
        now: Optional[datetime] = None,
    ) -> List[AlertRecord]:
        """
        Turn new records into alerts.

        Parameters
        ----------
        records : Sequence[TransactionRecord]
            Records to scan: the new records, plus any earlier events of the
            same entities that gaps should be measured against.
        max_alert_id : int
            Highest alert identifier already issued; new identifiers start above it.
        now : datetime | None
            Processing time (timezone-aware). Defaults to the current UTC time.

        Returns
        -------
        List[AlertRecord]
            Alerts ordered by their assigned identifiers.
        """
        ...


class AbstractDetector(abc.ABC):
    """
    Optional ABC helper for class-based implementations.

    Subclasses should set `name` and `alert_type` and implement `detect`.
    """

    name: str
    alert_type: str

    @abc.abstractmethod
    def detect(
        self,
        records: Sequence[TransactionRecord],
        *,
        max_alert_id: int = 0,
        now: Optional[datetime] = None,
    ) -> List[AlertRecord]:  # pragma: no cover - interface only
        """Run detection and return alerts."""
        raise NotImplementedError


def assign_alert_ids(alerts: Sequence[AlertRecord], max_alert_id: int) -> List[AlertRecord]:
    """
    Renumber already-ordered alerts so they start right above `max_alert_id`.
    """
    return [
        alert.model_copy(update={"alert_id": max_alert_id + rank})
        for rank, alert in enumerate(alerts, start=1)
    ]


__all__ = ["Detector", "AbstractDetector", "assign_alert_ids"]
