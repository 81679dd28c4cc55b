"""
Error taxonomy and operation outcomes.

Store and codec operations never raise these across their boundary; they are
converted into an ``Outcome`` that names the error kind.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional


class MemorableError(Exception):
    """Base class for all library errors."""


class NotFound(MemorableError):
    """A photo, file, collection or location does not exist."""


class UnsupportedFormat(MemorableError):
    """EXIF writing was requested for a non-JPEG container."""


class CorruptMetadata(MemorableError):
    """The EXIF segment could not be parsed or serialized."""


class IOFailure(MemorableError):
    """Reading, copying or writing a file failed."""


class NetworkFailure(MemorableError):
    """A geo service request failed."""


class GeoTimeout(NetworkFailure):
    """A geo service request exceeded its timeout."""


class ValidationFailure(MemorableError):
    """A value is out of range or malformed."""


@dataclass
class Outcome:
    """Result of a store, codec or orchestrator operation."""
    success: bool
    message: str = ""
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **data: Any) -> 'Outcome':
        return cls(success=True, message=message, data=data)

    @classmethod
    def from_error(cls, exc: Exception, **data: Any) -> 'Outcome':
        """
        Build a failed outcome from an exception.

        Library errors keep their class name as the error kind; anything else
        is reported as a generic failure.
        """
        kind = type(exc).__name__ if isinstance(exc, MemorableError) else "MemorableError"
        return cls(success=False, message=str(exc), error=kind, data=data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the outcome to a dictionary."""
        result = {'success': self.success, 'message': self.message, 'error': self.error}
        result.update(self.data)
        return result
