"""
Synchronization package - cache-first acquisition of profile data

- CacheStore persists one JSON snapshot per user and entity
- DataAcquisitionPipeline resolves entities from cache or fetches them live
- settle_all runs independent sub-fetches without letting one failure
  affect the others
"""

from .cache import CacheStore
from .fanout import settle_all, TaskOutcome
from .pipeline import DataAcquisitionPipeline, ProfileSnapshot, resolve

__all__ = [
    # Cache
    'CacheStore',

    # Fan-out
    'settle_all',
    'TaskOutcome',

    # Pipeline
    'DataAcquisitionPipeline',
    'ProfileSnapshot',
    'resolve',
]
