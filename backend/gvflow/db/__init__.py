"""Database module."""

from gvflow.db.database import close_database, get_db, init_database
from gvflow.db.entity_store import EntityAction, EntityChange, EntityStore
from gvflow.db.graph_store import GraphStore
from gvflow.db.variable_repository import VariableRepository

__all__ = [
    "get_db",
    "init_database",
    "close_database",
    "EntityAction",
    "EntityChange",
    "EntityStore",
    "GraphStore",
    "VariableRepository",
]
