"""
Caching for the program list.

Programs change rarely and are read on most screens, so the serialized list
is cached and dropped whenever a program is saved or deleted.
"""
from django.core.cache import cache
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
import logging

from .models import Program

logger = logging.getLogger(__name__)

PROGRAM_LIST_KEY = 'program_list:all'
PROGRAM_LIST_CACHE_TTL = 600  # 10 minutes


def get_cached_program_list():
    """Cached serialized program list, or None on a miss"""
    cached_data = cache.get(PROGRAM_LIST_KEY)
    if cached_data is not None:
        logger.debug("Cache hit for program list")
    return cached_data


def cache_program_list(data, ttl: int = None):
    cache.set(PROGRAM_LIST_KEY, data, ttl or PROGRAM_LIST_CACHE_TTL)
    logger.debug(f"Cached program list ({len(data)} programs)")


def invalidate_program_cache():
    cache.delete(PROGRAM_LIST_KEY)
    logger.debug("Invalidated program list cache")


@receiver([post_save, post_delete], sender=Program)
def program_changed(sender, instance, **kwargs):
    """Drop the cached list when a program changes"""
    invalidate_program_cache()
