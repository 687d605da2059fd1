"""
Idea Forge
==========

Generation engine for AI business ideas: profile-driven prompts, scored and
de-duplicated ideas, slot scheduling and live progress streaming.
"""

__version__ = "0.1.0"
