"""Build cache keys and persisted caches (see :mod:`nxmod.cache.store`)."""

from .keys import path_hash

__all__ = ["path_hash"]
