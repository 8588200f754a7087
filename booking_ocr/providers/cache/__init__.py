"""Cache provider implementations."""

from booking_ocr.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
