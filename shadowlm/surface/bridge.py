# surface/bridge.py
import asyncio
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from shadowlm.surface.surface import RemoteAutomationSurface

logger = logging.getLogger(__name__)

EventHandler = Callable[[str], None]

RESULT_EVENT = "result"
LOG_EVENT    = "log"


class ScriptBridge:
    """
    Ejecuta fragmentos de script en la superficie abierta y entrega los
    eventos con nombre que esos scripts emiten de vuelta.

    El contexto remoto es asíncrono y está desacoplado de la llamada:
    execute() no devuelve nada, los scripts reportan por eventos.
    """

    def __init__(self, surface: RemoteAutomationSurface):
        self._surface  = surface
        self._handlers: dict[str, list[EventHandler]] = {}
        surface.backend.set_event_sink(self.dispatch)

    @property
    def surface(self) -> RemoteAutomationSurface:
        return self._surface

    async def execute(self, script: str) -> None:
        """Fire-and-forget: el resultado, si lo hay, llega por evento."""
        logger.debug("Inyectando script (%d chars)", len(script))
        await self._surface.backend.execute_script(script)

    def on(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Suscripción con alcance. Devuelve la función para darse de baja."""
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    @contextmanager
    def subscription(self, event: str, handler: EventHandler) -> Iterator[None]:
        """Garantiza la baja del listener aunque la consulta termine con error."""
        unsubscribe = self.on(event, handler)
        try:
            yield
        finally:
            unsubscribe()

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def dispatch(self, event: str, payload: str) -> None:
        """Punto de entrada del canal de eventos de la plataforma."""
        if event == LOG_EVENT:
            logger.debug("[page] %s", payload)

        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception as e:
                logger.warning("Handler de '%s' falló: %s", event, e)

    async def request(
        self,
        script:  str,
        event:   str = RESULT_EVENT,
        timeout: float = 1.5,
        match:   Optional[Callable[[str], bool]] = None,
    ) -> Optional[str]:
        """
        Ejecuta el script y espera el primer payload del evento.
        `match` descarta payloads tardíos de scripts anteriores.
        Devuelve None si no llega nada antes del timeout.
        """
        loop   = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def handler(payload: str) -> None:
            if future.done():
                return
            if match is not None and not match(payload):
                return
            future.set_result(payload)

        with self.subscription(event, handler):
            await self.execute(script)
            try:
                return await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError:
                logger.debug("Sin respuesta para '%s' tras %.1fs", event, timeout)
                return None
