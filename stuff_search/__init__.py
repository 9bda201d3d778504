"""
stuff-search: find things in your house by describing them.
Semantic retrieval over a SQLite inventory of containers and items.
"""

__version__ = "0.3.0"
