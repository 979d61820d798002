"""Fuente: Open Pet Food Facts (API JSON)."""

from .fetcher import OpenPetFoodFactsFetcher

__all__ = ["OpenPetFoodFactsFetcher"]
