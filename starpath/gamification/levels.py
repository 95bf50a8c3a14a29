"""Star levels. Thresholds match the seeded level badges."""

from typing import Any, Dict, List, Optional, Tuple

NEW_LEARNER = "New Learner"

LEVEL_THRESHOLDS: List[Tuple[str, int]] = [
    ("First Star", 1),
    ("Getting Started", 10),
    ("Star Beginner", 25),
    ("Rising Star", 50),
    ("Super Learner", 100),
    ("Star Collector", 250),
    ("Diamond Level", 500),
    ("Champion", 1000),
    ("Mega Star", 2500),
]


def calculate_level(total_stars: int) -> str:
    """Name of the highest level reached with `total_stars`."""
    level = NEW_LEARNER
    for name, threshold in LEVEL_THRESHOLDS:
        if (total_stars or 0) >= threshold:
            level = name
    return level


def next_level(total_stars: int) -> Dict[str, Any]:
    """Next level and the stars still needed; level is None at the top."""
    stars = total_stars or 0
    for name, threshold in LEVEL_THRESHOLDS:
        if stars < threshold:
            return {"level": name, "stars_needed": threshold - stars}
    return {"level": None, "stars_needed": 0}


def level_summary(total_stars: int) -> Dict[str, Optional[Any]]:
    upcoming = next_level(total_stars)
    return {
        "level": calculate_level(total_stars),
        "next_level": upcoming["level"],
        "stars_to_next_level": upcoming["stars_needed"],
    }
