# backend/epicrefine/__init__.py
"""EpicRefine - conversational requirements refinement engine."""

__version__ = "0.1.0"
__title__ = "EpicRefine"
__description__ = "Refine software epics into structured requirements through guided LLM conversation"
