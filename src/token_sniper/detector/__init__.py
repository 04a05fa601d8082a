"""Rule matching layer - Evaluates pairs against sniper configurations."""

from token_sniper.detector.matcher import MatchingEngine, MatchResult
from token_sniper.detector.models import SniperConfig, TokenMatch

__all__ = [
    "MatchResult",
    "MatchingEngine",
    "SniperConfig",
    "TokenMatch",
]
