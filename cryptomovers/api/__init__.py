from . import health, stats

__all__ = ["health", "stats"]
