"""
Hybrid Memory - long-term fact memory for autonomous agents.

Facts live in a SQLite store with supersession history and in a shared
ChromaDB vector index. New observations are classified as ADD, UPDATE,
DELETE or NOOP against their nearest existing facts.
"""

__version__ = "1.0.0"
