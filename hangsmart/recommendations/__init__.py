"""Activity recommendations for ready groups."""

from .services import RecommendationCache, RecommendationGateway

__all__ = ["RecommendationCache", "RecommendationGateway"]
