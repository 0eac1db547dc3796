"""
Database module.
Contains the datastore connection owned by each process.
"""

from jobqueue.db.connection import Datastore

__all__ = ["Datastore"]
