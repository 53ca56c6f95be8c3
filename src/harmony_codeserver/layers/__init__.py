"""Optional processing layers that can sit between the optimizer and the code server."""

from harmony_codeserver.layers.cache import CacheHit, CacheLogError, PointCache

__all__ = ["CacheHit", "CacheLogError", "PointCache"]
