"""
Core modules.
Contains configuration, logging, metrics and the shared resilience primitives
(cache, rate limiter, circuit breaker).
"""
from .config import Settings

__all__ = ["Settings"]
