"""
Services package for the arena duel bot.
"""

from .rating_cache import CachedRatingService

__all__ = ['CachedRatingService']
