"""Database package for MongoDB operations using Beanie ODM.

Modules:
    manager: DatabaseManager singleton for connection handling
    models: Beanie Document models for trips and their GPS points

Usage:
    from db.models import Trip

    trip = await Trip.find_one(Trip.trip_id == "abc123")
"""

from db.manager import DatabaseManager, db_manager
from db.models import ALL_DOCUMENT_MODELS, Trip, TripGpsPoint

__all__ = [
    "ALL_DOCUMENT_MODELS",
    "DatabaseManager",
    "Trip",
    "TripGpsPoint",
    "db_manager",
]
