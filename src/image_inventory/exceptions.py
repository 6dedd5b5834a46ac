"""Custom exceptions for image inventory scanning."""


class InventoryError(Exception):
    """Base exception for all inventory errors."""

    pass


class FormatError(InventoryError):
    """Raised when an archive manifest cannot be recognized or resolved."""

    pass


class ExtractionError(InventoryError):
    """Raised when layer content cannot be read from the archive."""

    pass


class InvalidReferenceError(InventoryError):
    """Raised when an image reference cannot be split into its parts."""

    pass


class TarReadError(InventoryError):
    """Raised when unable to open or read a tar file."""

    pass


class RegistryError(InventoryError):
    """Base exception for registry-related errors."""

    pass


class RegistryConnectionError(RegistryError):
    """Raised when unable to connect to the registry."""

    pass


class ManifestError(RegistryError):
    """Raised when manifest retrieval fails."""

    pass


class BlobDownloadError(RegistryError):
    """Raised when a blob download fails or does not match its digest."""

    pass
