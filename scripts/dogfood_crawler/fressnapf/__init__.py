"""Fuente: Fressnapf (HTML)."""

from .fetcher import FressnapfFetcher

__all__ = ["FressnapfFetcher"]
