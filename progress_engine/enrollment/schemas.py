from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from progress_engine.models.enrollment import Enrollment


class EnrollmentResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    enrollment: Enrollment
    is_new_enrollment: bool
    message: str | None = None
