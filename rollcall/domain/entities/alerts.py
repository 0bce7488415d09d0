"""Alert rule entities. Rules are data and can be edited at runtime."""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AlertType(str, Enum):
    ATTENDANCE = "attendance"
    SECURITY = "security"
    QUALITY = "quality"
    BEHAVIOR = "behavior"


class ConditionType(str, Enum):
    TIME = "time"
    RECOGNITION = "recognition"
    QUALITY = "quality"
    EXPRESSION = "expression"
    MULTIPLE_FACES = "multiple_faces"
    LIVENESS = "liveness"
    STATUS = "status"


class Operator(str, Enum):
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    BETWEEN = "between"


class ActionType(str, Enum):
    TOAST = "toast"
    LOG = "log"
    EMAIL = "email"
    SOUND = "sound"
    HIGHLIGHT = "highlight"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


class AlertCondition(BaseModel):
    """A single predicate; all conditions of a rule must hold."""
    type: ConditionType
    operator: Operator
    value: Any
    threshold: Optional[float] = None


class AlertAction(BaseModel):
    """Declarative side effect executed when a rule triggers."""
    type: ActionType
    message: str
    data: Optional[Dict[str, Any]] = None


class AlertRule(BaseModel):
    """Named condition -> action binding."""
    id: str = Field(..., min_length=1)
    name: str
    type: AlertType
    conditions: List[AlertCondition] = Field(default_factory=list)
    actions: List[AlertAction] = Field(default_factory=list)
    enabled: bool = True
    priority: Priority = Priority.MEDIUM
