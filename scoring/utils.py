"""
Scoring utility functions.
Provides bucket thresholds (loaded from YAML when present), step evaluation and total helpers
used by scoring.metrics and scoring.gateway.
"""
import copy
import logging
import os
from typing import Any, Dict, Optional, Sequence, Tuple
import yaml
from correlate.models import SCORE_AXES

logger = logging.getLogger(__name__)

# filename used for threshold YAML configuration
THRESHOLDS_FILENAME = 'scoring.yaml'

MIN_SCORE = 0
MAX_SCORE = 10

# (upper bound inclusive, score) steps; anything above the last bound scores ``above``
DEFAULT_THRESHOLDS: Dict[str, Dict[str, Any]] = {
    # lines changed
    'code_volume': {'buckets': [[0, 0], [500, 2], [2000, 4], [5000, 6], [10000, 8]], 'above': 10},
    # commit count, plus a bonus per repository beyond the first
    'complexity': {'buckets': [[0, 0], [2, 2], [5, 4], [10, 6], [20, 8]], 'above': 10, 'repository_bonus': 1, 'repository_bonus_cap': 3},
    # distinct repositories
    'technical_depth': {'buckets': [[0, 0], [1, 3], [2, 5], [4, 7]], 'above': 10},
    # commit count
    'scope': {'buckets': [[0, 0], [2, 2], [5, 4], [10, 6], [20, 8]], 'above': 10},
    # review count
    'review_contribution': {'buckets': [[0, 0], [2, 2], [5, 4], [10, 6], [20, 8]], 'above': 10},
}


def default_thresholds_path() -> str:
    return os.path.join(os.path.dirname(os.path.dirname(__file__)), 'config', THRESHOLDS_FILENAME)


def _valid_buckets(buckets: Any) -> bool:
    if not isinstance(buckets, list) or not buckets:
        return False
    bounds = []
    for step in buckets:
        if not isinstance(step, (list, tuple)) or len(step) != 2:
            return False
        bound, score = step
        if not isinstance(bound, (int, float)) or not isinstance(score, (int, float)):
            return False
        if not MIN_SCORE <= score <= MAX_SCORE:
            return False
        bounds.append(bound)
    return bounds == sorted(bounds)


def _merge_axis(axis: str, base: Dict[str, Any], override: Any, path: str) -> Dict[str, Any]:
    if not isinstance(override, dict):
        logger.warning("Ignoring %s thresholds in %s: expected a mapping", axis, path)
        return base
    merged = dict(base)
    if 'buckets' in override:
        if _valid_buckets(override['buckets']):
            merged['buckets'] = [list(step) for step in override['buckets']]
        else:
            logger.warning("Ignoring %s buckets in %s: expected ascending [bound, score] pairs with scores 0-10", axis, path)
    for key in ('above', 'repository_bonus', 'repository_bonus_cap'):
        if key not in override:
            continue
        try:
            value = int(override[key])
        except (TypeError, ValueError):
            logger.warning("Ignoring %s.%s in %s: not an integer", axis, key, path)
            continue
        if not MIN_SCORE <= value <= MAX_SCORE:
            logger.warning("Ignoring %s.%s in %s: %d is outside %d-%d", axis, key, path, value, MIN_SCORE, MAX_SCORE)
            continue
        merged[key] = value
    return merged


def load_thresholds(path: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    """
    Load bucket thresholds from a YAML file if available, otherwise return defaults.
    Axes or keys missing from the file keep their default values.
    """
    thresholds = copy.deepcopy(DEFAULT_THRESHOLDS)
    if not path:
        path = default_thresholds_path()
    if not os.path.exists(path):
        return thresholds
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as ex:
        logger.warning("Could not read scoring thresholds from %s: %s; using defaults", path, ex)
        return thresholds
    if not isinstance(data, dict):
        logger.warning("Scoring thresholds in %s must be a mapping; using defaults", path)
        return thresholds
    for axis in SCORE_AXES:
        if axis in data:
            thresholds[axis] = _merge_axis(axis, thresholds[axis], data[axis], path)
    return thresholds


def bucket_score(value: float, buckets: Sequence[Sequence[float]], above: int) -> int:
    """Step function: the score of the first bucket whose upper bound is >= ``value``, kept within 0-10."""
    result = above
    for bound, score in buckets:
        if value <= bound:
            result = score
            break
    return min(max(int(result), MIN_SCORE), MAX_SCORE)


def clamp_score(value: Any) -> Tuple[int, bool]:
    """Clamp a sub-score into 0-10. Returns (clamped value, whether it was out of range)."""
    number = float(value)
    clamped = int(round(min(max(number, MIN_SCORE), MAX_SCORE)))
    return clamped, not (MIN_SCORE <= number <= MAX_SCORE)


def compute_total(scores: Dict[str, Any]) -> int:
    """Sum of the five sub-scores; missing axes count as zero and any other key is ignored."""
    return sum(int(scores.get(axis, 0) or 0) for axis in SCORE_AXES)