"""
External collaborators feeding the reconciliation engine.
"""

from .base import CurtailmentEvent, CurtailmentSource, DifficultySource
from .curtailment_source import StorageCurtailmentSource
from .difficulty_source import HttpDifficultySource, MappingDifficultySource

__all__ = [
    "CurtailmentEvent",
    "CurtailmentSource",
    "DifficultySource",
    "StorageCurtailmentSource",
    "HttpDifficultySource",
    "MappingDifficultySource",
]
