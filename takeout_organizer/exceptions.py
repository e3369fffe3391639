"""
Custom exception hierarchy for the takeout organizer.

This module defines specific exception types to improve error handling
and debugging throughout the application.
"""


class TakeoutOrganizerError(Exception):
    """Base exception for all takeout organizer errors."""
    pass


class FileHashError(TakeoutOrganizerError):
    """Raised when file hashing fails."""
    pass


class SidecarParseError(TakeoutOrganizerError):
    """Raised when a sidecar JSON document cannot be read or decoded."""
    pass


class MetadataWriteError(TakeoutOrganizerError):
    """Raised when exiftool fails to write metadata into a file."""
    pass


class FileOperationError(TakeoutOrganizerError):
    """Raised when directory creation or file copy operations fail."""
    pass


class CollisionError(FileOperationError):
    """Raised when no free destination name can be found."""
    pass


class AlbumSelectionError(TakeoutOrganizerError):
    """Raised when an album selection references an unknown album."""
    pass


class PatternError(TakeoutOrganizerError):
    """Raised when a custom date pattern is invalid."""
    pass


class DateReviewError(TakeoutOrganizerError):
    """Raised when the date review is not confirmed."""
    pass
