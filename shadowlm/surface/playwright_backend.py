# surface/playwright_backend.py
import logging
from pathlib import Path
from typing import Optional

from playwright.async_api import (
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from shadowlm.surface.base import EMIT_BINDING, AutomationBackend, EventSink
from shadowlm.surface.models import SurfaceHandle

logger = logging.getLogger(__name__)

_DEFAULT_PROFILE_DIR = Path.home() / ".shadowlm" / "browser-profile"


class PlaywrightBackend(AutomationBackend):
    """
    Superficie respaldada por un Chromium con perfil persistente.
    El perfil conserva la sesión de Google entre ejecuciones: el login se
    hace una vez a mano con `shadowlm show`.

    Los scripts inyectados reportan llamando a window.__shadowlm_emit__(evento, payload),
    una binding expuesta a nivel de contexto que sobrevive a las navegaciones.
    """

    def __init__(
        self,
        user_data_dir: Optional[str] = None,
        headless:      bool = False,
        width:         int  = 1280,
        height:        int  = 1000,
    ):
        self._user_data_dir = Path(user_data_dir) if user_data_dir else _DEFAULT_PROFILE_DIR
        self._headless      = headless
        self._viewport      = {"width": width, "height": height}   # tamaño escritorio forzado

        self._playwright: Optional[Playwright]     = None
        self._context:    Optional[BrowserContext] = None
        self._page:       Optional[Page]           = None
        self._sink:       Optional[EventSink]      = None
        self._visible     = False

    def set_event_sink(self, sink: EventSink) -> None:
        self._sink = sink

    async def open_surface(self, handle: SurfaceHandle) -> None:
        if self._page is not None and not self._page.is_closed():
            if handle.notebook_id in self._page.url:
                logger.debug("La superficie ya apunta a %s, se reutiliza", handle.url)
                return
            logger.info("URL distinta, navegando a %s", handle.url)
            await self._page.goto(handle.url, wait_until="domcontentloaded")
            return

        self._user_data_dir.mkdir(parents=True, exist_ok=True)
        self._playwright = await async_playwright().start()
        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir = str(self._user_data_dir),
            headless      = self._headless,
            viewport      = self._viewport,
        )
        await self._context.expose_binding(EMIT_BINDING, self._on_emit)

        pages      = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()
        await self._page.goto(handle.url, wait_until="domcontentloaded")

        # La superficie nace oculta, igual que una ventana sombra
        await self.set_visible(False)
        logger.info("Superficie creada para %s", handle.url)

    async def execute_script(self, script: str) -> None:
        page = self._require_page()
        # Los scripts son `void (async () => {...})()`: evaluate vuelve sin esperar al cuerpo
        await page.evaluate(script)

    async def set_visible(self, visible: bool) -> None:
        page = self._require_page()
        if not self._headless:
            session = await self._context.new_cdp_session(page)
            try:
                window = await session.send("Browser.getWindowForTarget")
                await session.send(
                    "Browser.setWindowBounds",
                    {
                        "windowId": window["windowId"],
                        "bounds":   {"windowState": "normal" if visible else "minimized"},
                    },
                )
            finally:
                await session.detach()
            if visible:
                await page.bring_to_front()
        self._visible = visible

    async def is_visible(self) -> bool:
        return self._page is not None and self._visible

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._context    = None
        self._page       = None
        self._playwright = None
        self._visible    = False

    async def _on_emit(self, source, event: str, payload: str) -> None:
        if self._sink is None:
            logger.debug("Evento '%s' sin sink registrado, descartado", event)
            return
        self._sink(event, payload)

    def _require_page(self) -> Page:
        if self._page is None or self._page.is_closed():
            raise RuntimeError("Superficie no encontrada: llama a open_surface() primero")
        return self._page
