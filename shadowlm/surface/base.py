# surface/base.py
from abc import ABC, abstractmethod
from typing import Callable

from shadowlm.surface.models import SurfaceHandle

# Función global que el backend expone en la página para emitir eventos
EMIT_BINDING = "__shadowlm_emit__"

# (nombre_evento, payload): eventos "result" y "log" emitidos por los scripts
EventSink = Callable[[str, str], None]


class AutomationBackend(ABC):
    """
    Contrato de la plataforma que aloja la superficie controlada.
    RemoteAutomationSurface y ScriptBridge solo hablan con esta interfaz.
    Nunca importan playwright_backend.py directamente.
    """

    @abstractmethod
    async def open_surface(self, handle: SurfaceHandle) -> None:
        """
        Abre la superficie para el handle, o navega a él si ya existe
        una abierta con otra URL. Nunca crea una segunda superficie.
        Puede lanzar cualquier error de la plataforma; el caller lo envuelve.
        """
        ...

    @abstractmethod
    async def execute_script(self, script: str) -> None:
        """
        Ejecuta un fragmento de script sin esperar su resultado.
        Los resultados vuelven de forma asíncrona por el EventSink.
        """
        ...

    @abstractmethod
    async def set_visible(self, visible: bool) -> None:
        ...

    @abstractmethod
    async def is_visible(self) -> bool:
        ...

    @abstractmethod
    def set_event_sink(self, sink: EventSink) -> None:
        """Canal de entrada: la plataforma llama a sink(evento, payload)."""
        ...

    async def close(self) -> None:
        """Libera la superficie. Opcional para backends sin recursos."""
        return None
