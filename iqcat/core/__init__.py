"""
Core module for engine configuration and utilities.

The adaptive testing engine lives in :mod:`iqcat.core.cat`; it is not
imported here so that loading settings never pulls in numpy or scipy.
"""
from .config import settings

__all__ = ["settings"]
