"""Interface definitions for pluggable backends.

    Interface        ->  Concrete implementations
    ------------------------------------------------------------
    IOCRProvider     ->  GeminiOCRProvider, OpenRouterOCRProvider,
                         NativePDFProvider      (booking_ocr/providers/ocr/)
    ICacheProvider   ->  MemoryCacheProvider    (booking_ocr/providers/cache/)
"""

from booking_ocr.interfaces.cache_provider import ICacheProvider
from booking_ocr.interfaces.ocr_provider import IOCRProvider

__all__ = ["ICacheProvider", "IOCRProvider"]
