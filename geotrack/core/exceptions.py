class GeoTrackError(Exception):
    pass


class QueryError(GeoTrackError):
    """The time-series store could not answer a range query."""
