"""pkgatlas - package discovery catalog with keyword, semantic and hybrid search."""

__version__ = "0.1.0"
