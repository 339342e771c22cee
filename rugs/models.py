"""SQLAlchemy ORM models for rugs."""

from __future__ import annotations

import enum
from typing import Any

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rugs.errors import ValidationError


class Base(DeclarativeBase):
    pass


# ------------------------------------------------------------------
# Enumerations (stored as integers)
# ------------------------------------------------------------------


class _CodedEnum(enum.IntEnum):
    """Integer enum that also accepts its member name on input."""

    @classmethod
    def parse(cls, value: Any) -> "_CodedEnum":
        if isinstance(value, cls):
            return value
        # bool is an int subclass; True/False are never valid codes
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                pass
        elif isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.label.lower() == key:
                    return member
        allowed = ", ".join(m.label for m in cls)
        raise ValidationError(
            f"invalid {cls.__name__} {value!r}; expected one of: {allowed}"
        )

    @property
    def label(self) -> str:
        return "".join(part.capitalize() for part in self.name.split("_"))


class BadgeResult(_CodedEnum):
    STARTING = 0
    FAILURE = 1
    WARNING = 2
    SUCCESS = 3
    SKIPPED = 4


class UserVote(_CodedEnum):
    NONE = 0
    COMPILE_SUCCESS = 1
    COMPILE_FAILURE = 2
    GOOD = 3
    BAD = 4


# ------------------------------------------------------------------
# Tables
# ------------------------------------------------------------------


class Project(Base):
    __tablename__ = "projects"

    project_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    stream: Mapped[str] = mapped_column(Text(collation="NOCASE"), nullable=False)
    project_name: Mapped[str] = mapped_column(
        Text(collation="NOCASE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("stream", "project_name", name="uq_projects_stream_project"),
    )


class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.project_id"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    change_number: Mapped[int] = mapped_column(Integer, nullable=False)
    build_type: Mapped[str] = mapped_column(Text, nullable=False)
    result: Mapped[int] = mapped_column(Integer, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    added_at: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "project_id", "build_type", "change_number", name="uq_badges_slot"
        ),
        Index(
            "idx_badges_project_sequence_change",
            "project_id",
            "sequence",
            "change_number",
        ),
    )

    @property
    def badge_result(self) -> BadgeResult:
        return BadgeResult(self.result)


class UserEvent(Base):
    __tablename__ = "user_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.project_id"), nullable=False
    )
    change_number: Mapped[int] = mapped_column(Integer, nullable=False)
    user_name: Mapped[str] = mapped_column(Text, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[int] = mapped_column(Integer, nullable=False)
    synced_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    vote: Mapped[int | None] = mapped_column(Integer, nullable=True)
    investigating: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    starred: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "project_id", "user_name", "change_number", name="uq_user_events_slot"
        ),
        Index(
            "idx_user_events_project_sequence_change",
            "project_id",
            "sequence",
            "change_number",
        ),
    )

    @property
    def user_vote(self) -> UserVote | None:
        return None if self.vote is None else UserVote(self.vote)
