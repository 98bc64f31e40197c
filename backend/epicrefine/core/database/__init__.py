# backend/epicrefine/core/database/__init__.py
"""
Database package for EpicRefine.

Provides SQLAlchemy models and the declarative base.
"""

from .base import Base
from .models import (
    ConversationalAnalysis,
    ConversationalMessage,
    RequirementsArtifact,
)

__all__ = [
    "Base",
    "ConversationalAnalysis",
    "ConversationalMessage",
    "RequirementsArtifact",
]
