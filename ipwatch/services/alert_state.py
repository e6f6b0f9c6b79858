import logging
from datetime import datetime, timezone
from typing import Optional

from ipwatch.models.monitoring_alert import MonitoringAlert
from ipwatch.services.errors import InvalidStatus

logger = logging.getLogger(__name__)

ALERT_STATUSES = ("new", "reviewed", "investigating", "action_taken", "resolved", "false_positive")
TERMINAL_STATUSES = {"resolved", "false_positive"}
LINKED_STATUSES = {"action_taken", "resolved", "false_positive"}

_STATUS_RANK = {
    "new": 0,
    "reviewed": 1,
    "investigating": 2,
    "action_taken": 3,
    "resolved": 4,
    "false_positive": 4
}


def normalize_status(value: Optional[str]) -> str:
    status = str(value or "").strip().lower()
    if status not in _STATUS_RANK:
        raise InvalidStatus(f"Invalid status: {value!r}")
    return status


def is_backward(current: str, target: str) -> bool:
    if current == target:
        return False
    if current in TERMINAL_STATUSES:
        return True
    return _STATUS_RANK.get(target, 0) < _STATUS_RANK.get(current, 0)


def apply_status(
    alert: MonitoringAlert,
    new_status: str,
    acting_user: Optional[str] = None,
    now: Optional[datetime] = None
) -> MonitoringAlert:
    """
    Moves the alert to `new_status` and stamps the write-once review/resolution fields.

    Any of the six states may be requested from any state; backward moves are
    allowed but logged. The only hard rule beyond the state set is that an alert
    linked to an incident stays at action_taken or later.
    """
    target = normalize_status(new_status)
    current = alert.status or "new"
    now = now or datetime.now(timezone.utc)

    if alert.incident_id and target not in LINKED_STATUSES:
        raise InvalidStatus(f"Alert linked to incident {alert.incident_id} cannot move to {target}")

    if is_backward(current, target):
        logger.warning(
            "alert status moved backward",
            extra={"alert_id": alert.id, "from_status": current, "to_status": target, "user_id": acting_user}
        )

    alert.status = target

    if target == "reviewed":
        if alert.reviewed_at is None:
            alert.reviewed_at = now
        if not alert.reviewed_by and acting_user:
            alert.reviewed_by = acting_user

    if target == "resolved" and alert.resolved_at is None:
        alert.resolved_at = now

    return alert
