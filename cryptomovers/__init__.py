"""Top crypto movers with a stale-while-revalidate cache."""

__version__ = "0.1.0"
