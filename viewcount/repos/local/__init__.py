"""Local file implementations of view count repositories."""

from .target_config import LocalTargetConfigurationRepository

__all__ = ["LocalTargetConfigurationRepository"]
