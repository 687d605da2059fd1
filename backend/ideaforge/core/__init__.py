"""
Idea Forge - Core Package
=========================

Configuration, persistence, models, schemas and the generation engine.
"""

from ideaforge.core.config import settings
from ideaforge.core.database import Base

__all__ = ["Base", "settings"]
