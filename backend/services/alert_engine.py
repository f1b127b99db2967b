"""Overcrowding alert derivation and alert lifecycle."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional, Sequence

from backend.domain.errors import NotFoundError, ValidationError
from backend.domain.models import (
    Alert,
    AlertSeverity,
    AlertType,
    HourlyCrowdRecord,
    round_half_up,
)
from backend.repository.data_repository import DataRepository
from backend.utils.logger import get_logger, log_event


logger = get_logger(__name__)

HIGH_OCCUPANCY_RATIO = 0.9
CRITICAL_OCCUPANCY_RATIO = 1.1


@dataclass(frozen=True)
class AlertMutation:
    """An alert the engine decided to create; persisted later by `apply`."""

    alert_type: AlertType
    severity: AlertSeverity
    message: str
    affected_areas: tuple[str, ...]


def _has_active(
    alerts: Sequence[Alert | AlertMutation],
    alert_type: AlertType,
    severity: Optional[AlertSeverity] = None,
) -> bool:
    for alert in alerts:
        if isinstance(alert, Alert) and not (alert.is_active and alert.resolved_at is None):
            continue
        if alert.alert_type is not alert_type:
            continue
        if severity is None or alert.severity is severity:
            return True
    return False


def evaluate(
    temple_capacity: int,
    record: HourlyCrowdRecord,
    active_alerts: Sequence[Alert],
) -> list[AlertMutation]:
    """Decide which overcrowding alerts a new hourly reading should raise.

    High fires above 90% of temple capacity unless any overcrowding alert is
    active. Critical fires above 110% unless a critical one is active, and is
    raised in addition to the high alert. Nothing is resolved here.
    """
    if temple_capacity <= 0:
        return []
    ratio = record.actual_visitors / temple_capacity
    percentage = round_half_up(ratio * 100)
    pending: list[AlertMutation] = []

    if ratio > HIGH_OCCUPANCY_RATIO and not _has_active(active_alerts, AlertType.OVERCROWDING):
        pending.append(
            AlertMutation(
                alert_type=AlertType.OVERCROWDING,
                severity=AlertSeverity.HIGH,
                message=(
                    f"Temple is at {percentage}% capacity. "
                    "Consider crowd control measures."
                ),
                affected_areas=("Main Temple",),
            )
        )

    if ratio > CRITICAL_OCCUPANCY_RATIO and not _has_active(
        [*active_alerts, *pending],
        AlertType.OVERCROWDING,
        AlertSeverity.CRITICAL,
    ):
        pending.append(
            AlertMutation(
                alert_type=AlertType.OVERCROWDING,
                severity=AlertSeverity.CRITICAL,
                message=(
                    f"CRITICAL: Temple is over capacity at {percentage}%. "
                    "Immediate action required."
                ),
                affected_areas=("Main Temple", "Queue Area"),
            )
        )
    return pending


class AlertEngine:
    """Persists engine decisions, manual alerts and resolutions.

    Callers hold an immediate transaction on the simulation while evaluating,
    so reading active alerts and inserting new ones happens under one writer.
    """

    def __init__(
        self,
        repository: DataRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or datetime.now

    def evaluate_and_apply(
        self,
        connection: sqlite3.Connection,
        simulation_id: int,
        temple_capacity: int,
        record: HourlyCrowdRecord,
    ) -> list[Alert]:
        active_alerts = self._repository.list_active_alerts(connection, simulation_id)
        mutations = evaluate(temple_capacity, record, active_alerts)
        return self.apply(connection, simulation_id, mutations)

    def apply(
        self,
        connection: sqlite3.Connection,
        simulation_id: int,
        mutations: Sequence[AlertMutation],
    ) -> list[Alert]:
        created: list[Alert] = []
        for mutation in mutations:
            alert = self._repository.insert_alert(
                connection,
                simulation_id,
                alert_type=mutation.alert_type,
                severity=mutation.severity,
                message=mutation.message,
                affected_areas=mutation.affected_areas,
                created_at=self._clock(),
            )
            log_event(
                logger,
                "Alert raised",
                alert_id=alert.alert_id,
                simulation_id=simulation_id,
                severity=alert.severity.value,
            )
            created.append(alert)
        return created

    def add_alert(
        self,
        connection: sqlite3.Connection,
        simulation_id: int,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        affected_areas: Sequence[str] = (),
    ) -> Alert:
        """Append an operator alert; these are never deduplicated."""
        if not message or not message.strip():
            raise ValidationError("Alert message is required")
        alert = self._repository.insert_alert(
            connection,
            simulation_id,
            alert_type=alert_type,
            severity=severity,
            message=message.strip(),
            affected_areas=tuple(area.strip() for area in affected_areas if area.strip()),
            created_at=self._clock(),
        )
        log_event(
            logger,
            "Manual alert added",
            alert_id=alert.alert_id,
            simulation_id=simulation_id,
            alert_type=alert_type.value,
            severity=severity.value,
        )
        return alert

    def resolve(self, temple_id: int, alert_id: int) -> Alert:
        """Resolve an alert once. Resolving it again returns the stored alert unchanged."""
        with self._repository.transaction() as conn:
            alert = self._repository.get_alert_for_temple(temple_id, alert_id, conn)
            if alert is None:
                raise NotFoundError(f"alert_id {alert_id} was not found for temple_id {temple_id}")
            if not alert.is_active or alert.resolved_at is not None:
                log_event(logger, "Alert already resolved", alert_id=alert_id)
                return alert
            resolved_at = self._clock().replace(microsecond=0)
            self._repository.mark_alert_resolved(conn, alert_id, resolved_at)
        log_event(logger, "Alert resolved", alert_id=alert_id, temple_id=temple_id)
        return replace(alert, is_active=False, resolved_at=resolved_at)
