"""chordfinder: frame-by-frame chord recognition from chroma features."""

__version__ = "0.3.0"
