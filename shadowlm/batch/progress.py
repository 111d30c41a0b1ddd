# batch/progress.py
import logging
from typing import Callable, Optional

from shadowlm.batch.models import BatchProgress

logger = logging.getLogger(__name__)

LineObserver     = Callable[[str], None]
ProgressObserver = Callable[[BatchProgress], None]


class ProgressReporter:
    """
    Contador {current, total} más un log de líneas solo-append.
    Los observadores reciben cada línea nueva y cada snapshot de progreso.
    """

    def __init__(self):
        self.current = 0
        self.total   = 0
        self.lines: list[str] = []
        self._line_observers:     list[LineObserver]     = []
        self._progress_observers: list[ProgressObserver] = []

    def on_line(self, observer: LineObserver) -> None:
        self._line_observers.append(observer)

    def on_progress(self, observer: ProgressObserver) -> None:
        self._progress_observers.append(observer)

    def snapshot(self) -> BatchProgress:
        return BatchProgress(current=self.current, total=self.total)

    def start(self, total: int) -> None:
        """Fija el total al inicio del batch. No se modifica después."""
        self.current = 0
        self.total   = total
        self._broadcast_progress()

    def advance(self) -> BatchProgress:
        """+1 por unidad considerada. current nunca decrece."""
        self.current += 1
        self._broadcast_progress()
        return self.snapshot()

    def log(self, line: str) -> None:
        self.lines.append(line)
        logger.info(line)
        for observer in list(self._line_observers):
            try:
                observer(line)
            except Exception as e:
                logger.warning("Observador de líneas falló: %s", e)

    def _broadcast_progress(self) -> None:
        snapshot = self.snapshot()
        for observer in list(self._progress_observers):
            try:
                observer(snapshot)
            except Exception as e:
                logger.warning("Observador de progreso falló: %s", e)

    def last_line(self) -> Optional[str]:
        return self.lines[-1] if self.lines else None
