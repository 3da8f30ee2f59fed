"""
Exceptions raised while loading the catalogue and serving placeholders.
Each request-level error carries the HTTP status it is answered with.
"""


class PlaceholderError(Exception):
    """Base class for all placepugs errors."""

    status = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class MissingParameter(PlaceholderError):
    status = 400


class InvalidParameter(PlaceholderError):
    status = 400


class CatalogueLoadError(PlaceholderError):
    """The catalogue could not be loaded; the server must not start."""


class NoCandidateImage(PlaceholderError):
    pass


class ImageReadError(PlaceholderError):
    pass


class DecodeError(PlaceholderError):
    pass


class EncodeError(PlaceholderError):
    pass
