"""Routers package."""

from . import (
    health,
    categorize,
    trust,
    feedback,
)
