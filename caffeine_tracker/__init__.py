"""Local-first caffeine tracking store with WebDAV snapshot sync."""

__version__ = "0.1.0"
