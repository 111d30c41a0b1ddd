# surface/models.py
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

_NOTEBOOK_BASE_URL = "https://notebooklm.google.com/notebook/"


@dataclass(frozen=True)
class SurfaceHandle:
    """
    Identifica una sesión remota lógica (un notebook).
    Si no se indica notebook_url se deriva del notebook_id.
    """
    notebook_id:  str
    notebook_url: Optional[str] = None

    @property
    def url(self) -> str:
        return self.notebook_url or f"{_NOTEBOOK_BASE_URL}{self.notebook_id}"


VisibilityObserver = Callable[[bool], None]


@dataclass
class VisibilityState:
    """
    Estado de visibilidad compartido por referencia entre todas las vistas
    que muestran la misma superficie. Cada cambio se difunde a todos los
    observadores registrados, no solo a quien lo provocó.
    """
    visible:    bool = False
    _observers: list[VisibilityObserver] = field(
        default_factory=list, compare=False, repr=False
    )

    def subscribe(self, observer: VisibilityObserver) -> Callable[[], None]:
        """Registra un observador y devuelve la función para darlo de baja."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def update(self, visible: bool) -> None:
        self.visible = visible
        # Copia: un observador puede darse de baja durante el broadcast
        for observer in list(self._observers):
            try:
                observer(visible)
            except Exception as e:
                logger.warning("Observador de visibilidad falló: %s", e)

    @property
    def observer_count(self) -> int:
        return len(self._observers)
