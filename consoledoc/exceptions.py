"""Exception classes for document loading, writing and playback."""

from __future__ import annotations


class DocumentError(Exception):
    """Base exception for document errors."""

    pass


class DocumentNotFoundError(DocumentError, FileNotFoundError):
    """Raised when the document file does not exist."""

    def __init__(self, path):
        super().__init__(f"Document not found: {path}")
        self.path = path


class MalformedContainerError(DocumentError):
    """Raised when a container cannot be recognized or its header is truncated.

    :param message: Human readable description
    :param offset: Byte offset into the file where the problem was detected
    :param record: Line number (1-based) of the offending record, if any
    """

    def __init__(self, message: str, *, offset: int | None = None, record: int | None = None):
        context = []
        if offset is not None:
            context.append(f"offset {offset}")
        if record is not None:
            context.append(f"record {record}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)
        self.offset = offset
        self.record = record


class MalformedRecordError(DocumentError):
    """Raised when a single line of a line-delimited stream cannot be parsed."""

    pass


class WriterStateError(DocumentError, RuntimeError):
    """Raised when the streaming writer is used out of order."""

    pass
