# shadowlm/reply_runner.py
import inspect
import json
import logging
from typing import Any, Optional, Protocol, Union

from shadowlm.batch.models import WorkItem
from shadowlm.batch.progress import ProgressReporter
from shadowlm.query.models import ParsedAnswer, StreamStatus
from shadowlm.query.prompt_builder import build_ticket_context, render_prompt_template
from shadowlm.query.protocol import QueryError, StreamingQueryProtocol
from shadowlm.query.response_parser import parse_bilingual_answer

logger = logging.getLogger(__name__)


class ReplySink(Protocol):
    """Destino de las respuestas generadas (backend de tickets)."""

    def submit_reply(self, ticket_id: int, zh_reply: str, target_reply: str) -> Any: ...

    def complete_task(self, ticket_id: int, success: bool) -> Any: ...


class ReplyTaskRunner:
    """
    Atiende una petición de respuesta: construye el prompt con la plantilla
    configurada, consulta con la superficie visible, parsea el par bilingüe
    y lo entrega al sink.

    Una petición a la vez: si la superficie ya está procesando, la petición
    se descarta con un warning (la cola entrega de una en una).
    """

    def __init__(
        self,
        protocol:        StreamingQueryProtocol,
        sink:            ReplySink,
        notebook_id:     Optional[str] = None,
        prompt_template: Optional[str] = None,
        reporter:        Optional[ProgressReporter] = None,
    ):
        self._protocol        = protocol
        self._sink            = sink
        self._notebook_id     = notebook_id
        self._prompt_template = prompt_template
        self._reporter        = reporter or ProgressReporter()

    @property
    def protocol(self) -> StreamingQueryProtocol:
        return self._protocol

    @property
    def reporter(self) -> ProgressReporter:
        return self._reporter

    async def handle(self, payload: Union[str, dict]) -> Optional[ParsedAnswer]:
        """
        Procesa una petición (JSON o dict ya decodificado).
        Devuelve el par entregado, o None si se descartó o falló.
        """
        surface = self._protocol.surface
        if surface.processing:
            logger.warning("Petición de respuesta descartada: ya hay una tarea en curso")
            return None

        if not self._notebook_id:
            self._reporter.log("❌ Tarea de respuesta: notebook_id no configurado")
            return None

        ticket_id: Optional[int] = None
        surface.processing = True
        try:
            request   = json.loads(payload) if isinstance(payload, str) else payload
            item      = WorkItem.from_dict(request)
            ticket_id = item.id
            self._reporter.log(f"🤖 Tarea de respuesta: generando respuesta para el ticket #{ticket_id}")

            prompt = render_prompt_template(self._prompt_template, build_ticket_context(item))

            # La página puede no ejecutar scripts con la ventana minimizada
            await surface.show()
            self._reporter.log(f"🌐 Superficie visible para el ticket #{ticket_id}")

            final_text = ""
            async for event in self._protocol.query(prompt):
                if event.status is StreamStatus.ERROR:
                    raise QueryError(event.text)
                final_text = event.text

            if not final_text.strip():
                raise QueryError("La IA generó una respuesta vacía")

            answer = parse_bilingual_answer(final_text)
            await _maybe_await(self._sink.submit_reply(
                ticket_id, answer.reference_text, answer.target_text
            ))
            self._reporter.log(f"✅ Respuesta del ticket #{ticket_id} enviada correctamente.")
            await _maybe_await(self._sink.complete_task(ticket_id, True))
            return answer

        except Exception as e:
            logger.error("Tarea de respuesta fallida: %s: %s", type(e).__name__, e)
            self._reporter.log(f"❌ Error en la tarea de respuesta: {e}")
            if ticket_id is not None:
                try:
                    await _maybe_await(self._sink.complete_task(ticket_id, False))
                except Exception as sink_error:
                    logger.error("complete_task falló para #%s: %s", ticket_id, sink_error)
            return None

        finally:
            surface.processing = False


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
