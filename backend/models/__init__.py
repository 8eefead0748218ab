from models.user import User, UserRole
from models.course import (
    Course, Lesson, Dependency,
    AgeGroup, CodingLanguage, SubjectType, DependencyType,
)
from models.achievement import AchievementType, UserAchievement, UserPoints
from models.progress import UserProgress, CodeExecution

__all__ = [
    "User", "UserRole",
    "Course", "Lesson", "Dependency",
    "AgeGroup", "CodingLanguage", "SubjectType", "DependencyType",
    "AchievementType", "UserAchievement", "UserPoints",
    "UserProgress", "CodeExecution",
]
