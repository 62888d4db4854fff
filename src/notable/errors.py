"""Exceptions raised by notable.

IO problems on paths that exist are not wrapped; they surface as the usual :exc:`OSError` subclasses.
"""


class Error(Exception):
    """Base class for notable's own exceptions."""
    pass


class NoteNotFoundError(Error, FileNotFoundError):
    """Raised when opening a note whose file does not exist."""
    pass


class NoteExistsError(Error, FileExistsError):
    """Raised when creating a note at a path that is already occupied, without asking to overwrite."""
    pass


class InvalidDataDirError(Error):
    """Raised when a data directory has no ``notes`` subdirectory."""
    pass


class RepositoryClosedError(Error):
    """Raised when a :class:`notable.repo.Repository` is used before :meth:`open` or after :meth:`close`."""
    pass


class ExportError(Error):
    """Raised when the external renderer cannot be run or reports failure."""
    pass


class ParseError(Error):
    """Raised when a note's metadata header cannot be parsed."""
    def __init__(self, message: str, path: str, cause: BaseException = None):
        super().__init__(f'{message}: {path}')
        self.message = message
        self.path = path
        self.cause = cause
