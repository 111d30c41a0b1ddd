# query/protocol.py
import asyncio
import json
import logging
import uuid
from typing import AsyncIterator, Optional

from shadowlm.abort import AbortSignal
from shadowlm.query.models import (
    DomContract,
    QueryRequest,
    QueryState,
    QueryTimings,
    StreamEvent,
    StreamStatus,
)
from shadowlm.query.scripts import (
    build_clear_history_script,
    build_snapshot_script,
    build_submit_script,
)
from shadowlm.surface.bridge import ScriptBridge
from shadowlm.surface.surface import SurfaceUnavailableError

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Errores propios del protocolo
# ------------------------------------------------------------------

class QueryError(Exception):
    """Error fatal para una consulta. Nunca afecta a otras consultas."""
    pass


class NoInputElementError(QueryError):
    """No existe el input de texto: el contrato DOM de la página cambió."""
    pass


class SubmissionFailureError(QueryError):
    """El control de envío no existe o no se pudo pulsar."""
    pass


class QueryTimeoutError(QueryError):
    """Timeout duro: la página no llegó a un estado terminal."""
    pass


# ------------------------------------------------------------------
# Protocolo
# ------------------------------------------------------------------

class StreamingQueryProtocol:
    """
    Ejecuta exactamente una consulta hasta el final y produce un stream
    deduplicado de StreamEvent.

    INIT → CLEARING_HISTORY → SUBMITTING → POLLING → {COMPLETE | ERROR}

    La página no tiene señal fiable de "terminado": se combina el balance
    de corchetes del snapshot con que el input vuelva a estar habilitado.
    """

    def __init__(
        self,
        bridge:  ScriptBridge,
        timings: Optional[QueryTimings] = None,
        dom:     Optional[DomContract]  = None,
    ):
        self._bridge  = bridge
        self._timings = timings or QueryTimings()
        self._dom     = dom or DomContract()
        self.state    = QueryState.INIT
        self.request: Optional[QueryRequest] = None

    @property
    def surface(self):
        return self._bridge.surface

    async def query(
        self,
        prompt: str,
        abort:  Optional[AbortSignal] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Generador asíncrono: cada llamada es una consulta nueva (no reanudable).
        Los elementos intermedios son STREAMING; el último es siempre
        exactamente un COMPLETE o un ERROR.
        Si la superficie no se puede abrir se propaga SurfaceUnavailableError:
        un solo intento, sin evento de error.
        """
        self.state   = QueryState.INIT
        request      = QueryRequest(prompt=prompt, handle=self.surface.handle)
        self.request = request
        logger.debug("query() con prompt de %d chars para %s", len(prompt), request.handle.url)
        last_text = ""

        try:
            await self.surface.init(request.handle)

            self.state = QueryState.CLEARING_HISTORY
            await self._clear_history()

            self.state = QueryState.SUBMITTING
            await self._submit(request.prompt)

            self.state = QueryState.POLLING
            async for event in self._poll(abort):
                last_text = event.text
                yield event

        except SurfaceUnavailableError:
            # Fatal para quien llama: no es un fallo de esta consulta, no se reintenta
            self.state = QueryState.ERROR
            raise

        except Exception as e:
            logger.error("Consulta fallida en %s: %s: %s", self.state.value, type(e).__name__, e)
            self.state = QueryState.ERROR
            yield StreamEvent(
                text   = _error_text(f"{type(e).__name__}: {e}", last_text),
                status = StreamStatus.ERROR,
            )

    # ------------------------------------------------------------------
    # Fases
    # ------------------------------------------------------------------

    async def _clear_history(self) -> bool:
        """
        Best-effort: hasta N ciclos de borrar-y-comprobar.
        Agotar los ciclos no es fatal: se registra y se continúa.
        """
        # El script espera dos veces menu_wait_ms antes de reportar
        timeout = self._timings.result_timeout_seconds + 2 * self._timings.menu_wait_ms / 1000

        for cycle in range(1, self._timings.clear_history_cycles + 1):
            rid    = _new_rid()
            result = await self._request(
                build_clear_history_script(rid, self._dom, self._timings), rid, timeout
            )
            state  = (result or {}).get("state")

            if state == "empty":
                logger.debug("Historial vacío (ciclo %d)", cycle)
                return True

            if state == "cleared":
                logger.debug("Historial borrado en ciclo %d, comprobando", cycle)
            else:
                logger.debug(
                    "Ciclo %d de limpieza sin éxito: %s",
                    cycle, (result or {}).get("reason", "sin respuesta"),
                )
            await asyncio.sleep(self._timings.clear_settle_seconds)

        logger.warning(
            "No se pudo confirmar el historial vacío tras %d ciclos, se continúa",
            self._timings.clear_history_cycles,
        )
        return False

    async def _submit(self, prompt: str) -> None:
        rid     = _new_rid()
        timeout = self._timings.result_timeout_seconds + self._timings.input_settle_ms / 1000
        result  = await self._request(
            build_submit_script(rid, prompt, self._dom, self._timings), rid, timeout
        )

        if result is None:
            raise SubmissionFailureError("La página no confirmó el envío del prompt")
        if result.get("ok"):
            logger.debug("Prompt enviado")
            return

        error = result.get("error", "desconocido")
        if error == "no_input":
            raise NoInputElementError("No se encontró el input de texto en la página")
        if error == "no_submit":
            raise SubmissionFailureError("No se encontró el botón de envío")
        raise SubmissionFailureError(f"Fallo al enviar el prompt: {error}")

    async def _poll(self, abort: Optional[AbortSignal]) -> AsyncIterator[StreamEvent]:
        timings = self._timings

        last_emitted = ""
        last_valid: Optional[str] = None
        cycles_since_valid = 0

        for cycle in range(1, timings.max_poll_cycles + 1):
            await asyncio.sleep(timings.poll_interval_seconds)

            if abort is not None and abort.is_set():
                logger.info("Consulta cancelada en el ciclo %d", cycle)
                self.state = QueryState.ERROR
                yield StreamEvent(
                    text   = _error_text("consulta cancelada", last_emitted),
                    status = StreamStatus.ERROR,
                )
                return

            text, idle = await self._snapshot()
            balanced   = is_balanced(text)

            if balanced and idle:
                self.state = QueryState.COMPLETE
                logger.debug("Respuesta completa en ciclo %d (%d chars)", cycle, len(text))
                yield StreamEvent(text=text, status=StreamStatus.COMPLETE)
                return

            if balanced:
                # Sintácticamente plausible pero la página sigue ocupada:
                # se retiene para que el evento terminal nunca repita texto.
                # El contador no se reinicia: el texto puede oscilar sin fin.
                if last_valid is not None:
                    cycles_since_valid += 1
                last_valid = text
            else:
                if last_valid is not None:
                    cycles_since_valid += 1
                if text and text != last_emitted:
                    last_emitted = text
                    yield StreamEvent(text=text, status=StreamStatus.STREAMING)

            if last_valid is not None and cycles_since_valid >= timings.soft_idle_cycles:
                logger.warning(
                    "Timeout blando: %d ciclos sin estado terminal tras respuesta válida, "
                    "se fuerza la finalización",
                    cycles_since_valid,
                )
                self.state = QueryState.COMPLETE
                yield StreamEvent(
                    text   = _distinct(last_valid, last_emitted),
                    status = StreamStatus.COMPLETE,
                )
                return

        self.state = QueryState.ERROR
        logger.error("Timeout duro tras %d ciclos de polling", timings.max_poll_cycles)
        timeout = QueryTimeoutError(
            f"Sin respuesta completa tras {timings.max_poll_cycles} ciclos "
            f"(~{timings.max_poll_cycles * timings.poll_interval_seconds:.0f}s)"
        )
        yield StreamEvent(
            text   = _error_text(f"{type(timeout).__name__}: {timeout}", last_emitted),
            status = StreamStatus.ERROR,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _snapshot(self) -> tuple[str, bool]:
        rid    = _new_rid()
        result = await self._request(build_snapshot_script(rid, self._dom), rid)
        if result is None:
            return "", False
        return str(result.get("text") or ""), bool(result.get("idle"))

    async def _request(
        self,
        script:  str,
        rid:     str,
        timeout: Optional[float] = None,
    ) -> Optional[dict]:
        payload = await self._bridge.request(
            script,
            timeout = timeout if timeout is not None else self._timings.result_timeout_seconds,
            match   = lambda raw: _payload_rid(raw) == rid,
        )
        if payload is None:
            return None
        return _decode(payload)


# ------------------------------------------------------------------
# Funciones de módulo
# ------------------------------------------------------------------

def is_balanced(text: str) -> bool:
    """Heurística de completitud: mismos '[' que ']' y al menos uno."""
    opens = text.count("[")
    return opens > 0 and opens == text.count("]")


def _new_rid() -> str:
    return uuid.uuid4().hex[:12]


def _decode(payload: str) -> Optional[dict]:
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, TypeError):
        logger.debug("Payload no JSON descartado: %.80s", payload)
        return None
    return data if isinstance(data, dict) else None


def _payload_rid(payload: str) -> Optional[str]:
    data = _decode(payload)
    return data.get("rid") if data else None


def _error_text(message: str, last_text: str) -> str:
    return _distinct(f"Error de la superficie: {message}", last_text)


def _distinct(text: str, previous: str) -> str:
    """Garantiza que dos eventos consecutivos nunca lleven el mismo texto."""
    return text if text != previous else text + " "
