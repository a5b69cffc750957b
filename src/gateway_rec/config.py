"""
Configuration constants for the gateway recommender core.

This module centralizes all magic numbers and configurable parameters.
A few values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# Embedding cache
DEFAULT_CACHE_SIZE = _get_int_env("GATEWAY_REC_CACHE_SIZE", 1000, min_val=1)

# Optional JSON file with sub-vector weights (genre/type/metadata/keywords)
_weights_path = os.environ.get("GATEWAY_REC_EMBEDDING_WEIGHTS")
EMBEDDING_WEIGHTS_PATH = Path(_weights_path) if _weights_path else None

# Preference learning
DEFAULT_LEARNING_RATE = 0.3   # Base EMA alpha before confidence/signal scaling
MIN_LEARNING_RATE = 0.1
MAX_LEARNING_RATE = 0.7
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95
CONFIDENCE_GAIN = 0.1         # Share of remaining distance to max on a strong signal
CONFIDENCE_DECAY = 0.05       # Share of current confidence lost on a weak signal
STRONG_SIGNAL_THRESHOLD = 0.5
GENRE_AFFINITY_DEFAULT = 0.5
GENRE_AFFINITY_STEP = 0.1
GENRE_BOOST_FACTOR = 0.1      # Score boost per unit of affinity above neutral

# Signal strength weights (sum to 1.0 at most)
SIGNAL_WEIGHT_COMPLETION = 0.4
SIGNAL_WEIGHT_RATING = 0.3
SIGNAL_INFERRED_RATING_BONUS = 0.15  # No rating but finished most of it
SIGNAL_INFERRED_COMPLETION = 0.8
SIGNAL_REWATCH_BONUS = 0.2
SIGNAL_WEIGHT_DURATION = 0.1

# Temporal patterns
TEMPORAL_DURATION_DECAY = 0.9
MAX_TEMPORAL_GENRES = 10

# Neutral score for cold-start users, members without vectors and unknown affinity
NEUTRAL_SCORE = 0.5

# Cached profile lifetime inside a PreferenceAgent
PREFERENCE_CACHE_TTL = _get_float_env("GATEWAY_REC_PREFERENCE_TTL", 60.0, min_val=0.0)
PREFERENCE_STALE_DAYS = 7

# Personalized query blending
DEFAULT_QUERY_WEIGHT = 0.7

# Explanation thresholds used by PreferenceAgent.explain_recommendation
EXPLAIN_GENRE_AFFINITY = 0.7
EXPLAIN_HIGH_MATCH = 0.8
EXPLAIN_MEDIUM_MATCH = 0.6
EXPLAIN_ACCLAIMED_RATING = 7.5

# Recommendation accuracy: completion needed to count a recommendation as a hit
ACCURACY_COMPLETION_THRESHOLD = 0.7

# Group consensus
GROUP_MIN_WEIGHT = 0.6        # Weight of the least satisfied member in the group score
GROUP_MEAN_WEIGHT = 0.4
FAIRNESS_THRESHOLD = _get_float_env("GATEWAY_REC_FAIRNESS_THRESHOLD", 0.6, min_val=0.0)
APPROVAL_THRESHOLD = 0.5      # Cosine satisfaction counted as approval
VOTE_ALGORITHM_WEIGHT = 0.3
VOTE_HUMAN_WEIGHT = 0.7
MIN_VOTE = 0
MAX_VOTE = 10
MAX_SESSION_CANDIDATES = 20
CANDIDATE_SEARCH_LIMIT = 100
CANDIDATE_SEARCH_THRESHOLD = 0.3
CONTEXT_TIME_BOOST = 0.2
DEFAULT_RUNTIME_MINUTES = 120
SESSION_MAX_AGE_HOURS = _get_float_env("GATEWAY_REC_SESSION_MAX_AGE_HOURS", 24.0, min_val=0.0)

# Explanations
EXPLANATION_MAX_FACTORS = 5
EXPLANATION_MIN_WEIGHT = 0.05
EXPLANATION_MAX_RELATED = 5           # Related ids kept per factor
EXPLANATION_MAX_MERGED_RELATED = 10   # Related ids kept after merging
EXPLANATION_MIN_CONFIDENCE = 0.3
EXPLANATION_MAX_CONFIDENCE = 0.95
EXPLANATION_DIVERSITY_STEP = 0.05
EXPLANATION_DIVERSITY_CAP = 0.15
EXPLANATION_PRIORITY_GAP = 0.1        # Weights closer than this fall back to priority order
