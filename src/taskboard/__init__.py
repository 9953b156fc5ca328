"""
taskboard: to-do items with tags and subtasks.

- taskboard.api: FastAPI service backed by a relational store
- taskboard.client: asyncio client with an optimistic query cache
"""

__version__ = "0.1.0"
