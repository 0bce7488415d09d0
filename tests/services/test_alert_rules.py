"""Tests for the alert rule engine."""
from datetime import datetime

import pytest

from rollcall.core.exceptions import AlertRuleNotFoundError
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
from rollcall.domain.value_objects.attendance import AlertContext
from rollcall.services.alert_rules import AlertRuleEngine, compare_values, default_rules

GOOD_QUALITY = AlertContext(quality_score=0.9, face_count=1, is_live=True)


def event(identity_id="alice", status=AttendanceStatus.PRESENT, hour=8, minute=30, name="Alice") -> AttendanceEvent:
    return AttendanceEvent(
        identity_id=identity_id,
        status=status,
        confidence=0.87,
        timestamp=datetime(2024, 3, 4, hour, minute, 15),
        name=name
    )


@pytest.fixture
def engine(dispatcher) -> AlertRuleEngine:
    return AlertRuleEngine(dispatcher=dispatcher, history_max=10, email_recipient="")


class TestDefaults:

    def test_default_rule_set(self):
        rules = {rule.id: rule for rule in default_rules()}

        assert set(rules) == {
            "late_arrival",
            "unauthorized_access",
            "poor_image_quality",
            "multiple_faces",
            "liveness_failed",
            "happy_mood",
        }
        assert not rules["happy_mood"].enabled
        assert rules["unauthorized_access"].priority == Priority.HIGH

    async def test_on_time_arrival_triggers_nothing(self, engine):
        assert await engine.evaluate(event(), GOOD_QUALITY) == []

    async def test_late_arrival(self, engine):
        alerts = await engine.evaluate(event(status=AttendanceStatus.LATE, hour=9, minute=5), GOOD_QUALITY)

        assert [a.rule_id for a in alerts] == ["late_arrival"]
        assert alerts[0].messages == ["Alice arrived late at 09:05:15", "Late arrival recorded for Alice"]

    async def test_late_arrival_follows_event_status_not_clock(self, engine):
        # cutoff moved to 08:15: late at 08:30
        early_late = await engine.evaluate(event(status=AttendanceStatus.LATE, hour=8, minute=30), GOOD_QUALITY)
        # cutoff moved to 10:00: present at 09:30
        late_present = await engine.evaluate(event(status=AttendanceStatus.PRESENT, hour=9, minute=30), GOOD_QUALITY)

        assert [a.rule_id for a in early_late] == ["late_arrival"]
        assert late_present == []

    async def test_unauthorized_person(self, engine):
        alerts = await engine.evaluate(
            event(identity_id=None, status=AttendanceStatus.UNAUTHORIZED, name=None),
            GOOD_QUALITY
        )

        assert [a.rule_id for a in alerts] == ["unauthorized_access"]
        assert alerts[0].priority == Priority.HIGH

    async def test_missing_quality_counts_as_poor(self, engine):
        alerts = await engine.evaluate(event())

        assert [a.rule_id for a in alerts] == ["poor_image_quality"]

    async def test_priority_order(self, engine):
        context = AlertContext(quality_score=0.2, face_count=3, is_live=False)

        alerts = await engine.evaluate(event(status=AttendanceStatus.LATE, hour=9, minute=30), context)

        assert [a.rule_id for a in alerts] == [
            "liveness_failed",
            "late_arrival",
            "multiple_faces",
            "poor_image_quality",
        ]

    async def test_disabled_rule_can_be_enabled(self, engine):
        engine.toggle_rule("happy_mood")

        alerts = await engine.evaluate(event(), AlertContext(quality_score=0.9, expression_score=0.8))

        assert [a.rule_id for a in alerts] == ["happy_mood"]
        assert alerts[0].messages == ["Alice is having a great day!"]


class TestTemplates:

    def test_placeholders(self):
        message = AlertRuleEngine.render("{user_name} {status} at {time} ({confidence})", event())

        assert message == "Alice present at 08:30:15 (0.87)"

    def test_user_name_fallbacks(self):
        unnamed = event(name=None)

        assert AlertRuleEngine.render("{user_name}", unnamed, AlertContext(user_name="Al")) == "Al"
        assert AlertRuleEngine.render("{user_name}", unnamed) == "Unknown User"


class TestCompareValues:

    @pytest.mark.parametrize("actual,operator,expected,result", [
        ("09:05", Operator.GREATER_THAN, "09:00", True),
        ("08:59", Operator.GREATER_THAN, "09:00", False),
        (0.4, Operator.LESS_THAN, 0.5, True),
        (2, Operator.GREATER_THAN, 1, True),
        (True, Operator.EQUALS, True, True),
        ("Front Door", Operator.CONTAINS, "door", True),
        (5, Operator.BETWEEN, [5, 10], True),
        (11, Operator.BETWEEN, [5, 10], False),
        ("abc", Operator.GREATER_THAN, 1, False),
    ])
    def test_operators(self, actual, operator, expected, result):
        assert compare_values(actual, operator, expected) is result


class TestRuleManagement:

    def test_add_and_get(self, engine):
        rule = AlertRule(
            id="vip",
            name="VIP",
            type=AlertType.ATTENDANCE,
            conditions=[AlertCondition(type=ConditionType.RECOGNITION, operator=Operator.EQUALS, value=True)],
            actions=[AlertAction(type=ActionType.LOG, message="VIP {user_name}")],
            priority=Priority.CRITICAL
        )
        engine.add_rule(rule)

        assert engine.get_rule("vip").priority == Priority.CRITICAL
        with pytest.raises(ValueError):
            engine.add_rule(rule)

    def test_update_keeps_id(self, engine):
        updated = engine.update_rule("late_arrival", id="other", priority=Priority.HIGH, enabled=False)

        assert updated.id == "late_arrival"
        assert engine.get_rule("late_arrival").priority == Priority.HIGH
        assert not engine.get_rule("late_arrival").enabled

    def test_get_rules_returns_copies(self, engine):
        engine.get_rules()[0].enabled = False

        assert engine.get_rules()[0].enabled

    def test_delete(self, engine):
        engine.delete_rule("multiple_faces")

        assert "multiple_faces" not in {r.id for r in engine.get_rules()}
        with pytest.raises(AlertRuleNotFoundError):
            engine.delete_rule("multiple_faces")

    def test_unknown_rule(self, engine):
        with pytest.raises(AlertRuleNotFoundError):
            engine.toggle_rule("missing")
        with pytest.raises(AlertRuleNotFoundError):
            engine.update_rule("missing", enabled=False)


class TestHistory:

    async def test_newest_first_and_bounded(self, engine):
        for minute in range(12):
            await engine.evaluate(event(status=AttendanceStatus.LATE, hour=9, minute=minute + 1), GOOD_QUALITY)

        history = engine.history()

        assert len(history) == 10
        assert history[0].event.timestamp.minute == 12
        assert len(engine.history(limit=3)) == 3

        engine.clear_history()
        assert engine.history() == []


class TestEmailAction:

    def email_rule(self, data=None) -> AlertRule:
        return AlertRule(
            id="notify_late",
            name="Notify Late",
            type=AlertType.ATTENDANCE,
            conditions=[AlertCondition(type=ConditionType.TIME, operator=Operator.GREATER_THAN, value="09:00")],
            actions=[AlertAction(type=ActionType.EMAIL, message="{user_name} is late", data=data)],
            priority=Priority.HIGH
        )

    async def test_dispatched_to_recipient(self, dispatcher):
        engine = AlertRuleEngine([self.email_rule()], dispatcher, email_recipient="office@example.com")

        await engine.evaluate(event(hour=9, minute=10))

        assert len(dispatcher.sent) == 1
        notification = dispatcher.sent[0]
        assert notification.recipient == "office@example.com"
        assert notification.subject == "[HIGH] Notify Late"
        assert notification.body == "Alice is late"

    async def test_action_recipient_overrides_default(self, dispatcher):
        engine = AlertRuleEngine(
            [self.email_rule({"recipient": "hr@example.com"})],
            dispatcher,
            email_recipient="office@example.com"
        )

        await engine.evaluate(event(hour=9, minute=10))

        assert dispatcher.sent[0].recipient == "hr@example.com"

    async def test_skipped_without_recipient(self, dispatcher):
        engine = AlertRuleEngine([self.email_rule()], dispatcher, email_recipient="")

        alerts = await engine.evaluate(event(hour=9, minute=10))

        assert len(alerts) == 1
        assert dispatcher.sent == []
