# surface/surface.py
import asyncio
import logging
from typing import Optional

from shadowlm.surface.base import AutomationBackend
from shadowlm.surface.models import SurfaceHandle, VisibilityObserver, VisibilityState

logger = logging.getLogger(__name__)


class SurfaceUnavailableError(Exception):
    """La superficie no pudo abrirse. Fatal: un solo intento, sin reintentos."""
    pass


class RemoteAutomationSurface:
    """
    Dueña única de la superficie controlada y de su visibilidad.

    Responsabilidades:
    - Abrir la superficie una sola vez por handle (init idempotente)
    - Esperar a que el JS de la página termine de arrancar antes de inyectar nada
    - Mostrar/ocultar y difundir cada cambio a todos los observadores
    - Exponer el guard `processing`: la página solo admite una conversación activa
    """

    def __init__(
        self,
        backend:        AutomationBackend,
        handle:         SurfaceHandle,
        visibility:     Optional[VisibilityState] = None,
        settle_seconds: float = 2.0,
    ):
        self._backend        = backend
        self._handle         = handle
        self._visibility     = visibility or VisibilityState()
        self._settle_seconds = settle_seconds
        self._opened_handle: Optional[SurfaceHandle] = None

        # Guard de exclusión mutua (booleano, no lock: el ejecutor es secuencial)
        self.processing = False

    @property
    def backend(self) -> AutomationBackend:
        return self._backend

    @property
    def handle(self) -> SurfaceHandle:
        return self._handle

    @property
    def visibility(self) -> VisibilityState:
        return self._visibility

    @property
    def visible(self) -> bool:
        return self._visibility.visible

    @property
    def is_open(self) -> bool:
        return self._opened_handle is not None

    async def init(self, handle: Optional[SurfaceHandle] = None) -> None:
        """
        Abre la superficie si todavía no está abierta para este handle.
        Solo espera el settle cuando realmente se abrió (o se navegó):
        sin esa pausa los lookups de elementos compiten con la inicialización
        de la página y fallan de forma espuria.
        """
        target = handle or self._handle
        if self._opened_handle == target:
            return

        logger.info("Abriendo superficie para %s", target.url)
        try:
            await self._backend.open_surface(target)
        except Exception as e:
            logger.error("open_surface falló para %s: %s", target.url, e)
            raise SurfaceUnavailableError(
                f"No se pudo abrir la superficie para {target.url}: {e}"
            ) from e

        self._handle        = target
        self._opened_handle = target

        logger.debug("Esperando %.1fs a que la página se estabilice", self._settle_seconds)
        await asyncio.sleep(self._settle_seconds)

    async def show(self) -> None:
        await self.init()
        await self._backend.set_visible(True)
        self._visibility.update(True)

    async def hide(self) -> None:
        """
        Oculta la superficie sin cerrarla: un show() posterior reutiliza
        el mismo handle sin volver a abrir.
        """
        if self.is_open:
            await self._backend.set_visible(False)
        else:
            logger.debug("hide() sin superficie abierta, solo se difunde el estado")
        self._visibility.update(False)

    async def refresh(self) -> bool:
        """Relee la visibilidad real desde la plataforma y la difunde."""
        visible = await self._backend.is_visible() if self.is_open else False
        self._visibility.update(visible)
        return visible

    def subscribe(self, observer: VisibilityObserver):
        return self._visibility.subscribe(observer)

    async def close(self) -> None:
        if not self.is_open:
            return
        await self._backend.close()
        self._opened_handle = None
        self._visibility.update(False)
