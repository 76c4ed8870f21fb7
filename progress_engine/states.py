"""State machines for courses, enrollments and path course progress.

Each machine is an enum tag plus a static adjacency table and a record of
per-state traits (label, color and the predicates policy code consults).
Transitions outside the table raise ``InvalidStateTransitionError``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from progress_engine.exceptions import InvalidStateTransitionError
from progress_engine.models.enums import (
    CourseProgressState,
    CourseStatus,
    EnrollmentStatus,
    PathEnrollmentState,
)

S = TypeVar("S", bound=enum.Enum)
T = TypeVar("T")


@dataclass(frozen=True)
class CourseTraits:
    label: str
    color: str
    can_edit: bool
    can_enroll: bool


@dataclass(frozen=True)
class EnrollmentTraits:
    label: str
    color: str
    can_access_content: bool
    can_track_progress: bool


@dataclass(frozen=True)
class PathEnrollmentTraits:
    label: str
    color: str
    can_access_content: bool
    can_track_progress: bool
    can_unlock_courses: bool


@dataclass(frozen=True)
class CourseProgressTraits:
    label: str
    color: str
    can_start: bool
    # Descriptive only: unlocking is decided by the prerequisite evaluator
    blocks_next: bool


class StateMachine(Generic[S, T]):
    def __init__(
        self,
        entity_type: str,
        initial: S,
        transitions: dict[S, frozenset[S]],
        traits: dict[S, T],
    ):
        missing = set(type(initial)) - set(traits)
        if missing:
            raise ValueError(f"{entity_type}: no traits for {sorted(m.value for m in missing)}")
        self.entity_type = entity_type
        self.initial = initial
        self._transitions = transitions
        self._traits = traits

    @property
    def states(self) -> list[S]:
        return list(self._traits)

    def allowed_from(self, state: S) -> frozenset[S]:
        return self._transitions.get(state, frozenset())

    def can_transition(self, from_state: S, to_state: S) -> bool:
        return to_state in self.allowed_from(from_state)

    def assert_transition(
        self,
        from_state: S,
        to_state: S,
        entity_id: Any = None,
        reason: str | None = None,
    ) -> None:
        if not self.can_transition(from_state, to_state):
            raise InvalidStateTransitionError(
                from_state=from_state.value,
                to_state=to_state.value,
                entity_type=self.entity_type,
                entity_id=entity_id,
                reason=reason,
            )

    def traits(self, state: S) -> T:
        return self._traits[state]


COURSE_STATES: StateMachine[CourseStatus, CourseTraits] = StateMachine(
    "Course",
    initial=CourseStatus.DRAFT,
    transitions={
        CourseStatus.DRAFT: frozenset({CourseStatus.PUBLISHED, CourseStatus.ARCHIVED}),
        CourseStatus.PUBLISHED: frozenset({CourseStatus.DRAFT, CourseStatus.ARCHIVED}),
        CourseStatus.ARCHIVED: frozenset({CourseStatus.DRAFT, CourseStatus.PUBLISHED}),
    },
    traits={
        CourseStatus.DRAFT: CourseTraits("Draft", "gray", can_edit=True, can_enroll=False),
        CourseStatus.PUBLISHED: CourseTraits("Published", "green", can_edit=False, can_enroll=True),
        CourseStatus.ARCHIVED: CourseTraits("Archived", "yellow", can_edit=True, can_enroll=False),
    },
)

ENROLLMENT_STATES: StateMachine[EnrollmentStatus, EnrollmentTraits] = StateMachine(
    "Enrollment",
    initial=EnrollmentStatus.ACTIVE,
    transitions={
        EnrollmentStatus.ACTIVE: frozenset({EnrollmentStatus.COMPLETED, EnrollmentStatus.DROPPED}),
        EnrollmentStatus.DROPPED: frozenset({EnrollmentStatus.ACTIVE}),
    },
    traits={
        EnrollmentStatus.ACTIVE: EnrollmentTraits(
            "Active", "blue", can_access_content=True, can_track_progress=True
        ),
        EnrollmentStatus.COMPLETED: EnrollmentTraits(
            "Completed", "green", can_access_content=True, can_track_progress=False
        ),
        EnrollmentStatus.DROPPED: EnrollmentTraits(
            "Dropped", "red", can_access_content=False, can_track_progress=False
        ),
    },
)

PATH_ENROLLMENT_STATES: StateMachine[PathEnrollmentState, PathEnrollmentTraits] = StateMachine(
    "LearningPathEnrollment",
    initial=PathEnrollmentState.ACTIVE,
    transitions={
        PathEnrollmentState.ACTIVE: frozenset(
            {PathEnrollmentState.COMPLETED, PathEnrollmentState.DROPPED}
        ),
        PathEnrollmentState.DROPPED: frozenset({PathEnrollmentState.ACTIVE}),
    },
    traits={
        PathEnrollmentState.ACTIVE: PathEnrollmentTraits(
            "Active", "blue",
            can_access_content=True, can_track_progress=True, can_unlock_courses=True,
        ),
        PathEnrollmentState.COMPLETED: PathEnrollmentTraits(
            "Completed", "green",
            can_access_content=True, can_track_progress=False, can_unlock_courses=False,
        ),
        PathEnrollmentState.DROPPED: PathEnrollmentTraits(
            "Dropped", "red",
            can_access_content=False, can_track_progress=False, can_unlock_courses=False,
        ),
    },
)

COURSE_PROGRESS_STATES: StateMachine[CourseProgressState, CourseProgressTraits] = StateMachine(
    "LearningPathCourseProgress",
    initial=CourseProgressState.LOCKED,
    transitions={
        CourseProgressState.LOCKED: frozenset({CourseProgressState.AVAILABLE}),
        CourseProgressState.AVAILABLE: frozenset(
            {CourseProgressState.IN_PROGRESS, CourseProgressState.COMPLETED}
        ),
        CourseProgressState.IN_PROGRESS: frozenset({CourseProgressState.COMPLETED}),
    },
    traits={
        CourseProgressState.LOCKED: CourseProgressTraits(
            "Locked", "gray", can_start=False, blocks_next=True
        ),
        CourseProgressState.AVAILABLE: CourseProgressTraits(
            "Available", "blue", can_start=True, blocks_next=True
        ),
        CourseProgressState.IN_PROGRESS: CourseProgressTraits(
            "In Progress", "yellow", can_start=True, blocks_next=True
        ),
        CourseProgressState.COMPLETED: CourseProgressTraits(
            "Completed", "green", can_start=True, blocks_next=False
        ),
    },
)
