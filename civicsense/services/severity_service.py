"""
Severity Service - Rule-based severity scoring for issues
"""
from types import MappingProxyType
from typing import Dict, Any, Optional

# Base severity for each category
CATEGORY_SEVERITY = MappingProxyType({
    "pothole": {"base": "high", "score": 8},
    "road_damage": {"base": "high", "score": 7},
    "water_leakage": {"base": "high", "score": 8},
    "drainage": {"base": "medium", "score": 6},
    "garbage": {"base": "medium", "score": 5},
    "streetlight": {"base": "low", "score": 4},
    "illegal_parking": {"base": "low", "score": 3},
    "noise": {"base": "low", "score": 3},
    "air_pollution": {"base": "medium", "score": 5},
    "others": {"base": "medium", "score": 5},
})

# Keyword classes, checked in this order; the first class that matches wins
SEVERITY_KEYWORDS = MappingProxyType({
    "critical": (
        "emergency", "accident", "danger", "dangerous", "urgent",
        "life-threatening", "flooding", "collapse"
    ),
    "high": (
        "major", "broken", "blocked", "severe", "large", "overflowing", "hazard"
    ),
    "low": ("minor", "small", "slight"),
})

KEYWORD_ADJUSTMENT = MappingProxyType({
    "critical": 2,
    "high": 1,
    "low": -1,
})

# Inclusive score bands
SEVERITY_LEVELS = MappingProxyType({
    "critical": (9, 10),
    "high": (7, 8),
    "medium": (4, 6),
    "low": (1, 3),
})

MIN_SCORE = 1
MAX_SCORE = 10


class SeverityService:
    """Stateless severity calculation from category and description"""

    def base_for(self, category: Optional[str]) -> Dict[str, Any]:
        return CATEGORY_SEVERITY.get(category or "others", CATEGORY_SEVERITY["others"])

    def matched_keyword_class(self, description: str) -> Optional[str]:
        """Return the first keyword class found in the description, if any"""
        text = (description or "").lower()
        for level, keywords in SEVERITY_KEYWORDS.items():
            if any(keyword in text for keyword in keywords):
                return level
        return None

    def level_for_score(self, score: int) -> str:
        if score >= SEVERITY_LEVELS["critical"][0]:
            return "critical"
        elif score >= SEVERITY_LEVELS["high"][0]:
            return "high"
        elif score >= SEVERITY_LEVELS["medium"][0]:
            return "medium"
        return "low"

    def calculate(self, category: Optional[str], description: str = "") -> Dict[str, Any]:
        """
        Calculate severity for an issue.

        Starts from the category's base score, applies a single keyword
        adjustment (critical +2, high +1, low -1), clamps to [1, 10] and
        derives the level from the score bands.

        Returns:
            {"severity": level, "severity_score": score}
        """
        score = self.base_for(category)["score"]

        keyword_class = self.matched_keyword_class(description)
        if keyword_class:
            score += KEYWORD_ADJUSTMENT[keyword_class]

        score = max(MIN_SCORE, min(MAX_SCORE, score))

        return {
            "severity": self.level_for_score(score),
            "severity_score": score
        }


# Singleton instance
severity_service = SeverityService()
