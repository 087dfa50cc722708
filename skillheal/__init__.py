"""skillheal: tiered LLM routing with fallback and self-healing for scheduled skills.

Features:
- Model catalog with per-token pricing and censorship tiers
- Policy-driven fallback chains with cost tracking
- Failure fingerprinting and recurring pattern detection
- Model-assisted diagnosis, backoff retries and escalation
"""

from skillheal.config import VERSION
from skillheal.core.runner import confirm_fix, diagnose, heal_failed_item, route, select_model

__all__ = ["VERSION", "route", "select_model", "heal_failed_item", "diagnose", "confirm_fix"]
