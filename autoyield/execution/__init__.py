"""Write-side surfaces: deposits, withdrawals and manual controls."""

from autoyield.execution.controls import ManualControls
from autoyield.execution.orchestrator import TransferOrchestrator
from autoyield.execution.surface import ActionSurface, OperationResult, SurfaceRegistry, SurfaceState

__all__ = [
    "ActionSurface",
    "ManualControls",
    "OperationResult",
    "SurfaceRegistry",
    "SurfaceState",
    "TransferOrchestrator",
]
