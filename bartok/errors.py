# bartok/errors.py
"""
Exception types raised by bartok.
"""


class BartokError(Exception):
    pass


class StoreUnavailable(BartokError):
    """The token backend could not be reached or failed the request."""


class RenderError(BartokError):
    """A token value could not be turned into an image."""
