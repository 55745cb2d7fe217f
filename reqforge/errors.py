from typing import Any, Dict, Optional


class WorkspaceError(Exception):
    """Single error shape surfaced by every workspace action."""

    code = "workspace_error"

    def __init__(self, message: str, operation: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "operation": self.operation,
            "context": self.context,
        }


# --- Validation errors: rejected locally, never sent to the backend ---
class WorkspaceValidationError(WorkspaceError):
    code = "validation_error"


class MalformedIdError(WorkspaceValidationError):
    code = "malformed_id"


class CycleError(WorkspaceValidationError):
    code = "cycle_detected"


class InFlightError(WorkspaceValidationError):
    code = "in_flight"


# --- Backend errors ---
class BackendError(WorkspaceError):
    code = "backend_error"


class RpcError(Exception):
    """Error reply returned by a JSON-RPC backend."""

    def __init__(self, message: str, code: int = -32000, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data
