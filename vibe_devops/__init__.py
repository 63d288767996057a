"""Vibe DevOps - an AI terminal agent for VPS and Docker operations."""

__version__ = "0.3.0"

from vibe_devops.config import Config

__all__ = ["Config", "__version__"]
