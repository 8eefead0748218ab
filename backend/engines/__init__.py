from engines.dependencies import DependencyResolver, Resolution, UserState
from engines.achievements import AchievementEngine, seed_achievement_types
from engines.progression import ProgressionTracker
from engines.navigation import NavigationPlanner
from engines.catalog import CourseCatalogAggregator
from engines.views import LearnerViews
from engines.authoring import CourseAuthoring

__all__ = [
    "DependencyResolver",
    "Resolution",
    "UserState",
    "AchievementEngine",
    "seed_achievement_types",
    "ProgressionTracker",
    "NavigationPlanner",
    "CourseCatalogAggregator",
    "LearnerViews",
    "CourseAuthoring",
]
