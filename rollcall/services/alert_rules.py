"""
Rule-based alerts raised from attendance events.

Rules are plain data (``AlertRule``) and can be added, edited, toggled or
removed while the service runs. Every condition of a rule must hold for it to
trigger. Triggered rules run their actions highest priority first.
"""
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from rollcall.core.config import settings
from rollcall.core.exceptions import AlertRuleNotFoundError
from rollcall.core.logging import get_logger
from rollcall.domain.entities.alerts import (
    ActionType,
    AlertAction,
    AlertCondition,
    AlertRule,
    AlertType,
    ConditionType,
    Operator,
    Priority,
)
from rollcall.domain.entities.attendance import AttendanceEvent, AttendanceStatus
from rollcall.domain.interfaces.notification.dispatcher import NotificationDispatcher
from rollcall.domain.value_objects.attendance import AlertContext, Notification, TriggeredAlert

logger = get_logger(__name__)

# Log method used for toast and sound actions, by rule priority
_SEVERITY = {
    Priority.CRITICAL: "error",
    Priority.HIGH: "error",
    Priority.MEDIUM: "warning",
    Priority.LOW: "info",
}


def default_rules() -> List[AlertRule]:
    """The stock rule set. ``happy_mood`` ships disabled."""
    return [
        AlertRule(
            id="late_arrival",
            name="Late Arrival Alert",
            type=AlertType.ATTENDANCE,
            conditions=[
                # follows the configured cutoff through the event's own status
                AlertCondition(type=ConditionType.STATUS, operator=Operator.EQUALS, value=AttendanceStatus.LATE.value),
            ],
            actions=[
                AlertAction(type=ActionType.TOAST, message="{user_name} arrived late at {time}"),
                AlertAction(type=ActionType.LOG, message="Late arrival recorded for {user_name}"),
            ],
            priority=Priority.MEDIUM,
        ),
        AlertRule(
            id="unauthorized_access",
            name="Unauthorized Access Alert",
            type=AlertType.SECURITY,
            conditions=[
                AlertCondition(type=ConditionType.RECOGNITION, operator=Operator.EQUALS, value=False),
            ],
            actions=[
                AlertAction(type=ActionType.TOAST, message="Unauthorized person detected!"),
                AlertAction(type=ActionType.LOG, message="Unauthorized access attempt recorded"),
                AlertAction(type=ActionType.HIGHLIGHT, message="Security alert triggered"),
            ],
            priority=Priority.HIGH,
        ),
        AlertRule(
            id="poor_image_quality",
            name="Poor Image Quality Alert",
            type=AlertType.QUALITY,
            conditions=[
                AlertCondition(type=ConditionType.QUALITY, operator=Operator.LESS_THAN, value=0.5, threshold=0.5),
            ],
            actions=[
                AlertAction(
                    type=ActionType.TOAST,
                    message="Poor image quality detected. Please improve lighting or camera position."
                ),
            ],
            priority=Priority.LOW,
        ),
        AlertRule(
            id="multiple_faces",
            name="Multiple Faces Alert",
            type=AlertType.BEHAVIOR,
            conditions=[
                AlertCondition(type=ConditionType.MULTIPLE_FACES, operator=Operator.GREATER_THAN, value=1),
            ],
            actions=[
                AlertAction(
                    type=ActionType.TOAST,
                    message="Multiple faces detected. Please ensure only one person is in frame."
                ),
            ],
            priority=Priority.MEDIUM,
        ),
        AlertRule(
            id="liveness_failed",
            name="Liveness Check Failed",
            type=AlertType.SECURITY,
            conditions=[
                AlertCondition(type=ConditionType.LIVENESS, operator=Operator.EQUALS, value=False),
            ],
            actions=[
                AlertAction(type=ActionType.TOAST, message="Liveness check failed. Please show natural movement."),
                AlertAction(type=ActionType.LOG, message="Potential spoofing attempt detected"),
            ],
            priority=Priority.HIGH,
        ),
        AlertRule(
            id="happy_mood",
            name="Happy Employee Alert",
            type=AlertType.BEHAVIOR,
            conditions=[
                AlertCondition(type=ConditionType.EXPRESSION, operator=Operator.GREATER_THAN, value=0.7, threshold=0.7),
            ],
            actions=[
                AlertAction(type=ActionType.TOAST, message="{user_name} is having a great day!"),
            ],
            enabled=False,
            priority=Priority.LOW,
        ),
    ]


def compare_values(actual: Any, operator: Operator, expected: Any) -> bool:
    """Generic comparator shared by every condition type.

    Two strings compare lexically (``"09:05" > "09:00"``); anything else is
    compared numerically. ``between`` takes an inclusive ``[min, max]`` pair and
    ``contains`` is a case-insensitive substring test.
    """
    try:
        if operator == Operator.EQUALS:
            return actual == expected
        if operator == Operator.GREATER_THAN:
            if isinstance(actual, str) and isinstance(expected, str):
                return actual > expected
            return float(actual) > float(expected)
        if operator == Operator.LESS_THAN:
            if isinstance(actual, str) and isinstance(expected, str):
                return actual < expected
            return float(actual) < float(expected)
        if operator == Operator.CONTAINS:
            return str(expected).lower() in str(actual).lower()
        if operator == Operator.BETWEEN:
            low, high = expected
            return float(low) <= float(actual) <= float(high)
    except (TypeError, ValueError) as e:
        logger.warning(
            "Alert condition not comparable",
            operator=operator.value,
            actual=actual,
            expected=expected,
            error=str(e)
        )
    return False


class AlertRuleEngine:
    """
    Evaluates alert rules against attendance events and runs their actions.

    Attributes:
        dispatcher: Receives rendered ``email`` actions; without one they are
            logged and skipped
        email_recipient: Recipient of rendered ``email`` actions
    """

    def __init__(
        self,
        rules: Optional[List[AlertRule]] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        *,
        history_max: Optional[int] = None,
        email_recipient: Optional[str] = None,
    ) -> None:
        self._rules: List[AlertRule] = list(rules) if rules is not None else default_rules()
        self.dispatcher = dispatcher
        self.email_recipient = email_recipient if email_recipient is not None else settings.ALERT_EMAIL_RECIPIENT
        self._history: Deque[TriggeredAlert] = deque(maxlen=history_max or settings.ALERT_HISTORY_MAX)

    async def evaluate(
        self,
        event: AttendanceEvent,
        context: Optional[AlertContext] = None,
    ) -> List[TriggeredAlert]:
        """Run every enabled rule against ``event``.

        Returns:
            Triggered alerts, highest priority first
        """
        context = context or AlertContext()
        triggered = [
            rule for rule in self._rules
            if rule.enabled and all(self._holds(c, event, context) for c in rule.conditions)
        ]
        triggered.sort(key=lambda rule: rule.priority.rank, reverse=True)

        alerts = []
        for rule in triggered:
            messages = [self.render(action.message, event, context) for action in rule.actions]
            for action, message in zip(rule.actions, messages):
                await self._execute(rule, action, message, event)

            alert = TriggeredAlert(
                rule_id=rule.id,
                rule_name=rule.name,
                priority=rule.priority,
                messages=messages,
                event=event
            )
            self._history.append(alert)
            alerts.append(alert)

        return alerts

    @staticmethod
    def render(template: str, event: AttendanceEvent, context: Optional[AlertContext] = None) -> str:
        """Fill ``{user_name}``, ``{time}``, ``{status}`` and ``{confidence}`` placeholders."""
        user_name = event.name or (context.user_name if context else None) or "Unknown User"
        return (
            template
            .replace("{user_name}", user_name)
            .replace("{time}", event.timestamp.strftime("%H:%M:%S"))
            .replace("{status}", event.status.value)
            .replace("{confidence}", f"{event.confidence or 0:.2f}")
        )

    # Rule management

    def get_rules(self) -> List[AlertRule]:
        return [rule.model_copy(deep=True) for rule in self._rules]

    def get_rule(self, rule_id: str) -> AlertRule:
        return self._find(rule_id).model_copy(deep=True)

    def add_rule(self, rule: AlertRule) -> AlertRule:
        if any(r.id == rule.id for r in self._rules):
            raise ValueError(f"Alert rule '{rule.id}' already exists")
        self._rules.append(rule)
        logger.info("Alert rule added", rule_id=rule.id, priority=rule.priority.value)
        return rule

    def update_rule(self, rule_id: str, **updates: Any) -> AlertRule:
        """Replace fields of a rule. The id cannot change."""
        current = self._find(rule_id)
        updates.pop("id", None)
        merged = AlertRule.model_validate({**current.model_dump(), **updates})
        self._rules[self._rules.index(current)] = merged
        logger.info("Alert rule updated", rule_id=rule_id, fields=sorted(updates))
        return merged

    def delete_rule(self, rule_id: str) -> None:
        rule = self._find(rule_id)
        self._rules.remove(rule)
        logger.info("Alert rule deleted", rule_id=rule_id)

    def toggle_rule(self, rule_id: str) -> AlertRule:
        rule = self._find(rule_id)
        rule.enabled = not rule.enabled
        logger.info("Alert rule toggled", rule_id=rule_id, enabled=rule.enabled)
        return rule

    def history(self, limit: Optional[int] = None) -> List[TriggeredAlert]:
        """Most recent alerts first."""
        limit = limit if limit is not None else settings.ALERT_HISTORY_LIMIT
        return list(reversed(self._history))[:limit]

    def clear_history(self) -> None:
        self._history.clear()

    def _find(self, rule_id: str) -> AlertRule:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        raise AlertRuleNotFoundError(f"Alert rule '{rule_id}' not found", details={"rule_id": rule_id})

    def _holds(self, condition: AlertCondition, event: AttendanceEvent, context: AlertContext) -> bool:
        if condition.type == ConditionType.TIME:
            actual: Any = event.timestamp.strftime("%H:%M")
        elif condition.type == ConditionType.RECOGNITION:
            actual = event.status != AttendanceStatus.UNAUTHORIZED
        elif condition.type == ConditionType.QUALITY:
            actual = context.quality_score or 0.0
        elif condition.type == ConditionType.EXPRESSION:
            if context.expression_score is None:
                return False
            actual = context.expression_score
        elif condition.type == ConditionType.MULTIPLE_FACES:
            actual = context.face_count or 1
        elif condition.type == ConditionType.STATUS:
            actual = event.status.value
        elif condition.type == ConditionType.LIVENESS:
            # unknown liveness counts as live
            actual = True if context.is_live is None else context.is_live
        else:
            return False
        return compare_values(actual, condition.operator, condition.value)

    async def _execute(self, rule: AlertRule, action: AlertAction, message: str, event: AttendanceEvent) -> None:
        fields: Dict[str, Any] = {
            "rule_id": rule.id,
            "priority": rule.priority.value,
            "identity_id": event.identity_id,
            "status": event.status.value,
        }

        if action.type in (ActionType.TOAST, ActionType.SOUND):
            getattr(logger, _SEVERITY[rule.priority])(message, action=action.type.value, **fields)
        elif action.type == ActionType.LOG:
            logger.info(f"[{rule.priority.value.upper()}] {message}", action=action.type.value, **fields)
        elif action.type == ActionType.HIGHLIGHT:
            logger.info(f"HIGHLIGHT: {message}", action=action.type.value, **fields)
        elif action.type == ActionType.EMAIL:
            await self._send_email(rule, message, event, action.data)

    async def _send_email(
        self,
        rule: AlertRule,
        message: str,
        event: AttendanceEvent,
        data: Optional[Dict[str, Any]],
    ) -> None:
        recipient = (data or {}).get("recipient") or self.email_recipient
        if self.dispatcher is None or not recipient:
            logger.info("Email alert not dispatched", rule_id=rule.id, reason="no dispatcher or recipient")
            return

        notification = Notification(
            recipient=recipient,
            subject=f"[{rule.priority.value.upper()}] {rule.name}",
            body=message,
            metadata={"rule_id": rule.id, "event_id": event.event_id, "identity_id": event.identity_id}
        )
        await self.dispatcher.send(notification)
        logger.info("Email alert dispatched", rule_id=rule.id, recipient=recipient)
