from shadowlm.surface.base import AutomationBackend, EMIT_BINDING
from shadowlm.surface.bridge import ScriptBridge
from shadowlm.surface.models import SurfaceHandle, VisibilityState
from shadowlm.surface.surface import RemoteAutomationSurface, SurfaceUnavailableError

__all__ = [
    "AutomationBackend",
    "EMIT_BINDING",
    "ScriptBridge",
    "SurfaceHandle",
    "VisibilityState",
    "RemoteAutomationSurface",
    "SurfaceUnavailableError",
]
