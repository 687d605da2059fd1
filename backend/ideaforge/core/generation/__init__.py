"""
Idea Generation Engine
======================

Turns a configuration profile into one scored, de-duplicated idea while
journaling every stage.

Components:
- GenerationOrchestrator: runs the stage sequence for one session
- GenerationJournal: persistent session status and log trail
- DuplicateDetector: exact-name and embedding similarity checks
- SlotScheduler: slot exclusivity and automatic triggering
- GenerationStream: live log/status events for a session
"""

from ideaforge.core.generation.duplicates import DuplicateDetector
from ideaforge.core.generation.journal import ActiveGenerationRegistry, GenerationJournal
from ideaforge.core.generation.orchestrator import GenerationOrchestrator, GenerationRequest
from ideaforge.core.generation.scheduler import SlotScheduler
from ideaforge.core.generation.services import GenerationServices, build_services
from ideaforge.core.generation.streaming import GenerationStream

__all__ = [
    "ActiveGenerationRegistry",
    "DuplicateDetector",
    "GenerationJournal",
    "GenerationOrchestrator",
    "GenerationRequest",
    "GenerationServices",
    "GenerationStream",
    "SlotScheduler",
    "build_services",
]
