"""In-memory TTL cache and Redis analytics store"""

from swaprouter.cache.store import AnalyticsStore
from swaprouter.cache.ttl_cache import TTLCache

__all__ = ["AnalyticsStore", "TTLCache"]
