"""
API routers package
"""
from civicsense.api import (
    system,
    auth,
    issues,
    stats,
    classify
)

__all__ = [
    "system",
    "auth",
    "issues",
    "stats",
    "classify"
]
