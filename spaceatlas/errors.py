from __future__ import annotations
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    NOT_A_DIRECTORY = "not_a_directory"
    INVALID_NAME = "invalid_name"
    BOUNDARY_VIOLATION = "boundary_violation"
    CYCLE_REJECTED = "cycle_rejected"
    CACHE_CORRUPT = "cache_corrupt"
    CANCELLED = "cancelled"
    MUTATION_FAILED = "mutation_failed"
    TREE = "tree"


class SpaceAtlasError(Exception):
    """Base error. ``kind`` lets callers pick a message without isinstance chains."""

    kind: ErrorKind = ErrorKind.MUTATION_FAILED

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path and self.path not in self.message:
            return f"{self.message}: {self.path}"
        return self.message


class AccessDenied(SpaceAtlasError):
    kind = ErrorKind.ACCESS_DENIED


class NotFound(SpaceAtlasError):
    kind = ErrorKind.NOT_FOUND


class NotADirectory(SpaceAtlasError):
    kind = ErrorKind.NOT_A_DIRECTORY


class InvalidName(SpaceAtlasError):
    kind = ErrorKind.INVALID_NAME


class BoundaryViolation(SpaceAtlasError):
    kind = ErrorKind.BOUNDARY_VIOLATION


class CycleRejected(SpaceAtlasError):
    kind = ErrorKind.CYCLE_REJECTED


class CacheCorrupt(SpaceAtlasError):
    kind = ErrorKind.CACHE_CORRUPT


class ScanCancelled(SpaceAtlasError):
    kind = ErrorKind.CANCELLED


class MutationFailed(SpaceAtlasError):
    kind = ErrorKind.MUTATION_FAILED


class TreeError(SpaceAtlasError):
    kind = ErrorKind.TREE


def from_os_error(exc: OSError, message: str, path: Optional[str] = None) -> SpaceAtlasError:
    if isinstance(exc, FileNotFoundError):
        return NotFound(message, path)
    if isinstance(exc, PermissionError):
        return AccessDenied(message, path)
    if isinstance(exc, NotADirectoryError):
        return NotADirectory(message, path)
    return MutationFailed(f"{message} ({exc.strerror or exc})", path)
