"""Share visibility resolution and mutation mirroring."""

from .resolver import ShareVisibilityResolver, parse_path

__all__ = ["ShareVisibilityResolver", "parse_path"]
