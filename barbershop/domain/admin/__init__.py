"""Admin domain - Shop setup, catalogue management and integration settings"""

from .router import router

__all__ = ["router"]
