"""
actionscope/utils/exceptions.py

Custom exceptions for the project.
"""


class TrafficSourceError(Exception):
    """
    Exception raised when the traffic source cannot serve a page or a point lookup.
    """
    pass


class InvalidCursorError(TrafficSourceError):
    """
    Exception raised when a pagination cursor was not issued by the traffic source.
    """
    pass
