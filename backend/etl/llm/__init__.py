from .extractor import GeminiExtractionBackend, build_chunk_payload
from .rate_limiter import ReservationRateLimiter

__all__ = ["GeminiExtractionBackend", "ReservationRateLimiter", "build_chunk_payload"]
