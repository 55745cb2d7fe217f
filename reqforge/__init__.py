from .errors import (
    BackendError,
    CycleError,
    InFlightError,
    MalformedIdError,
    WorkspaceError,
    WorkspaceValidationError,
)
from .models import ROOT_ID
from .store import WorkspaceStore

__version__ = "0.1.0"
