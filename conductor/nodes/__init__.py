"""Pluggable step implementations."""

from .base import StepHandler
from .placeholder import PlaceholderStep
from .registry import StepRegistry, default_registry

__all__ = ["StepHandler", "PlaceholderStep", "StepRegistry", "default_registry"]
