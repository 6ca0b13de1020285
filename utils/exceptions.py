"""Custom exceptions for the cache-fetch-transcode pipeline"""


class Mp3CacheError(Exception):
    """Base exception for mp3 cache errors"""


class ConfigurationError(Mp3CacheError):
    """Exception for invalid or inconsistent settings"""


class OriginNotFoundError(Mp3CacheError):
    """Exception for audio items the origin cannot resolve or deliver"""


class TransportError(OriginNotFoundError):
    """Exception for network failures while fetching or probing origin urls"""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class StorageError(Mp3CacheError):
    """Exception for storage-related errors"""


class StorageNotFoundError(StorageError):
    """Exception for paths that do not exist in the storage backend"""


class ConversionError(Mp3CacheError):
    """Exception for encoder failures"""


class TagWriteError(Mp3CacheError):
    """Exception for tag writing failures"""


class DeliveryConstructionError(Mp3CacheError):
    """Exception for delivery targets that cannot be built"""
