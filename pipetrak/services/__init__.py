"""
Services exposed to the route layer.
"""

from .milestone_service import MilestoneService, get_milestone_service
from .notifications import MilestoneNotifier

__all__ = [
    "MilestoneService",
    "get_milestone_service",
    "MilestoneNotifier",
]
