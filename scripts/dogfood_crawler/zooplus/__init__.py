"""Fuente: Zooplus (HTML)."""

from .fetcher import ZooplusFetcher

__all__ = ["ZooplusFetcher"]
