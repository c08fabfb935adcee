"""Exception taxonomy for the telemetry and evaluation core."""


class EvalGateError(Exception):
    """Base class for all evalgate errors."""


class InvalidOrderError(EvalGateError):
    """An event was appended with a timestamp earlier than the session's latest event."""

    def __init__(self, session_id: str, timestamp, latest):
        self.session_id = session_id
        self.timestamp = timestamp
        self.latest = latest
        super().__init__(
            f"Event for session {session_id} at {timestamp.isoformat()} "
            f"precedes latest recorded event at {latest.isoformat()}"
        )


class NotFoundError(EvalGateError, LookupError):
    """Unknown session, evaluator or report reference."""

    def __init__(self, kind: str, ref: str):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} not found: {ref}")


class DuplicateNameVersionError(EvalGateError):
    """An evaluator with the same (name, version) is already registered."""

    def __init__(self, name: str, version: str):
        self.name = name
        self.version = version
        super().__init__(f"Evaluator {name}@{version} is already registered")


class RegistryFrozenError(EvalGateError):
    """Registration attempted after the registry was frozen."""


class DuplicateSessionError(EvalGateError, ValueError):
    """A session with the same identifier already exists."""


class ConfigurationError(EvalGateError):
    """Configuration failed validation at load time."""


class StorageError(EvalGateError):
    """The storage layer could not be initialized or written."""
