"""
Shared utilities for TRUSTGATE.
"""
from .secrets import get_secret, mask_secret

__all__ = ["get_secret", "mask_secret"]
