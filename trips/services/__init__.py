"""Trip services module."""

from trips.services.match_store import TripMatchStore
from trips.services.point_source import PointSource, TripPointSource
from trips.services.road_matcher import OsrmRoadMatcher, RoadMatcher
from trips.services.route_matching import TripRouteMatcher

__all__ = (
    "OsrmRoadMatcher",
    "PointSource",
    "RoadMatcher",
    "TripMatchStore",
    "TripPointSource",
    "TripRouteMatcher",
)
