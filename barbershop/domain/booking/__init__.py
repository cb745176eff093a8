"""Booking domain - Public tenant catalogue, availability and appointments"""

from .router import router

__all__ = ["router"]
