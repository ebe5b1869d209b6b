"""Domain-specific exceptions."""


class DomainError(Exception):
    """Base exception for domain errors."""

    pass


class ValidationError(DomainError):
    """Raised when a request is rejected before any database work."""

    pass


class UnknownEntityError(ValidationError):
    """Raised when an entity key is not part of the registry."""

    def __init__(self, entity_key: str):
        self.entity_key = entity_key
        super().__init__(f"Unsupported entity '{entity_key}'")


class SchemaUnavailableError(DomainError):
    """Raised when a required table or column is missing from the live schema."""

    def __init__(self, table: str, column: str | None = None):
        self.table = table
        self.column = column
        if column:
            message = f"Column '{column}' is not available on '{table}'"
        else:
            message = f"Table '{table}' is not accessible"
        super().__init__(message)

    @property
    def missing(self) -> str:
        """Dotted name of the missing table or column."""
        return f"{self.table}.{self.column}" if self.column else self.table


class ConflictError(DomainError):
    """Raised when an active archive snapshot already exists for a root id.

    The archive engine resolves this by reusing the existing snapshot, so the
    error never reaches a caller.
    """

    def __init__(self, root_id: int, archived_id: object):
        self.root_id = root_id
        self.archived_id = archived_id
        super().__init__(f"Root id {root_id} is already archived as {archived_id}")


class ArchiveTransactionError(DomainError):
    """Raised when no id of an archive request could be committed."""

    def __init__(self, message: str, failures: list | None = None):
        self.failures = failures or []
        super().__init__(message)
