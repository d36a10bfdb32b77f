"""
dbsearch: keeps a forum's topics, posts and chat messages searchable in the
forum's own database engine.
"""

__version__ = "1.0.0"
