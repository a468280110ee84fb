"""API routers package."""

from shelfwarden.api import auth, candidates, feedback, rules, scans, stats

__all__ = ["auth", "candidates", "feedback", "rules", "scans", "stats"]
