"""
Interfaces module - adapters between the measurement layer and storage.

Provides the bridge that forwards coordinator events to the
annotation persistence facade.
"""

from .persistence_bridge import PersistenceBridge

__all__ = ['PersistenceBridge']
