from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ChangeRequest(Base):
    __tablename__ = "change_requests"

    id: Mapped[str] = mapped_column("id", String(64), primary_key=True)
    priority: Mapped[str] = mapped_column("priority", String(32), index=True)
    type: Mapped[str | None] = mapped_column("type", String(64), nullable=True)
    configuration_item: Mapped[str | None] = mapped_column("configurationItem", String(255), nullable=True)
    short_description: Mapped[str | None] = mapped_column("shortDescription", Text, nullable=True)
    assignment_group: Mapped[str | None] = mapped_column("assignmentGroup", String(255), nullable=True)
    assigned_to: Mapped[str | None] = mapped_column("assignedTo", String(255), nullable=True)
    actual_start_date: Mapped[datetime | None] = mapped_column("actualStartDate", DateTime, nullable=True, index=True)
    actual_end_date: Mapped[datetime | None] = mapped_column("actualEndDate", DateTime, nullable=True)
