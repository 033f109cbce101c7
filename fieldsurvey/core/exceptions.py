"""Local engine exceptions: persistence and schema/contract failures."""


class FieldSurveyError(Exception):
    """Base exception for all field survey engine errors."""


class PersistenceError(FieldSurveyError):
    """Raised when the local store is unavailable or a write transaction fails."""


class RecordNotFound(FieldSurveyError):
    """Raised when a local record does not exist."""

    def __init__(self, table: str, record_id: str) -> None:
        self.table = table
        self.record_id = record_id
        super().__init__(f"{table} record '{record_id}' not found")


class UnknownTableError(FieldSurveyError):
    """Raised when an operation names a table the local store does not manage."""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"Unknown local table '{table}'")


class FormConfigError(FieldSurveyError):
    """Raised when a form configuration document cannot be used."""


class RecordDeserializationError(FieldSurveyError):
    """Raised when a persisted row cannot be turned back into its typed form."""

    def __init__(self, table: str, record_id: str, message: str) -> None:
        self.table = table
        self.record_id = record_id
        super().__init__(f"[{table}:{record_id}] {message}")
