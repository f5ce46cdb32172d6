from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from changereport.errors import ErrorCategory


class Priority(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"

    @property
    def rank(self) -> int:
        return 1 if self is Priority.CRITICAL else 2


class NotSet:
    """Placeholder for an optional timestamp that was never recorded."""

    _instance: "NotSet | None" = None

    def __new__(cls) -> "NotSet":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_SET"


NOT_SET = NotSet()


@dataclass(frozen=True)
class ChangeRecord:
    id: str
    priority: Priority
    type: str
    configuration_item: str
    short_description: str
    assignment_group: str
    assigned_to: str
    actual_start_date: datetime | NotSet = NOT_SET
    actual_end_date: datetime | NotSet = NOT_SET


@dataclass(frozen=True)
class RunOutcome:
    status: str
    change_count: int = 0
    category: ErrorCategory | None = None
    message: str = ""

    @classmethod
    def success(cls, change_count: int) -> "RunOutcome":
        return cls(status="success", change_count=change_count)

    @classmethod
    def failure(cls, category: ErrorCategory, message: str) -> "RunOutcome":
        return cls(status="failure", category=category, message=message)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def exit_code(self) -> int:
        if self.succeeded:
            return 0
        if self.category is None:
            return ErrorCategory.GENERAL.exit_code
        return self.category.exit_code
