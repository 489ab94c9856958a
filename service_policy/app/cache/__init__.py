"""
Cache package for the Policy Service.

Provides an in-process, thread-safe decision cache with a validity
window. The engine clears it on every rule change.
"""

from .decision_cache import DecisionCache, make_cache_key

__all__ = ["DecisionCache", "make_cache_key"]
