class NlqError(Exception):
    """Base class for errors raised while answering a question."""


class SchemaUnavailableError(NlqError):
    """The database schema could not be read. Fatal for the current question."""


class UnsafeQueryError(NlqError):
    """A generated query was refused by the safe-select check."""

    def __init__(self, query: str) -> None:
        super().__init__(f"Generated SQL is not a safe SELECT statement: {query!r}")
        self.query = query


class QueryExecutionError(NlqError):
    """The database reported an error (or timed out) while running a query."""

    def __init__(self, query: str, message: str) -> None:
        super().__init__(message)
        self.query = query
        self.message = message


class LLMServiceError(NlqError):
    """The language-model service failed or could not be reached."""
