"""Exceptions raised by the image upload pipeline."""


class UploaderError(Exception):
    """Base class for pipeline errors."""


class WatchPathError(UploaderError):
    """The watched folder is missing or unreadable."""


class HistoryError(UploaderError):
    """The upload history could not be loaded, fingerprinted or persisted."""


class DeliveryError(UploaderError):
    """The remote destination did not accept the files."""


class StartupError(UploaderError):
    """The pipeline could not be brought up in a working state."""
