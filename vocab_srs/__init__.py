"""
Vocabulary SRS

Spaced repetition scheduling core: derives SM-2 quality grades from exercise
outcomes and schedules per-learner term reviews.
"""

from . import errors
from . import structured
from . import quality
from . import scheduler
from . import db

__version__ = "0.1.0"
__all__ = ["errors", "structured", "quality", "scheduler", "db"]
