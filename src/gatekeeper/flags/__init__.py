"""Feature flags: storage, evaluation and gradual rollout."""

from .cache import CacheStats, FlagCache
from .flag_routes import configure_flag_router
from .gradual import GradualRolloutController, RolloutPlan
from .models import DEFAULT_FLAGS, FeatureFlag, find_dependency_cycles
from .queries import FlagQueries
from .rollout import DecisionReason, FlagDecision, RolloutEvaluator, bucket
from .store import FeatureFlagStore

__all__ = [
    "DEFAULT_FLAGS",
    "CacheStats",
    "DecisionReason",
    "FeatureFlag",
    "FeatureFlagStore",
    "FlagCache",
    "FlagDecision",
    "FlagQueries",
    "GradualRolloutController",
    "RolloutEvaluator",
    "RolloutPlan",
    "bucket",
    "configure_flag_router",
    "find_dependency_cycles",
]
