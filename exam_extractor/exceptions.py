"""Custom exception classes for the extraction pipeline."""


class ExtractorError(Exception):
    """Base exception for extraction pipeline errors."""
    pass


class ConfigurationError(ExtractorError):
    """Raised when required configuration is missing or invalid."""
    pass


class SegmentationError(ExtractorError):
    """Raised when a document cannot be split into page-range units."""
    pass


class ExtractionServiceError(ExtractorError):
    """Raised when a call to the extraction service fails or times out."""
    pass


class ResponseParseError(ExtractorError):
    """Raised when a service response holds no usable structured value."""
    pass
