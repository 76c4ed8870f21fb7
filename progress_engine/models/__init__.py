# Import all models so Alembic can discover them via Base.metadata
from .assessment import Assessment, AssessmentAttempt
from .course import Course
from .course_module import CourseModule
from .enrollment import Enrollment
from .invitation import CourseInvitation
from .learning_path import LearningPath, LearningPathCourse
from .lesson import Lesson
from .lesson_progress import LessonProgress
from .path_enrollment import LearningPathCourseProgress, LearningPathEnrollment

__all__ = [
    "Assessment",
    "AssessmentAttempt",
    "Course",
    "CourseInvitation",
    "CourseModule",
    "Enrollment",
    "LearningPath",
    "LearningPathCourse",
    "LearningPathCourseProgress",
    "LearningPathEnrollment",
    "Lesson",
    "LessonProgress",
]
