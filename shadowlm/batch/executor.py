# batch/executor.py
import asyncio
import inspect
import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from shadowlm.abort import AbortSignal
from shadowlm.batch.models import (
    BatchJob,
    BatchOutcome,
    JobState,
    RetryPolicy,
    UnitResult,
    WorkItem,
)
from shadowlm.batch.progress import ProgressReporter
from shadowlm.query.models import StreamStatus
from shadowlm.query.prompt_builder import build_translation_prompt
from shadowlm.query.protocol import QueryError, StreamingQueryProtocol
from shadowlm.query.response_parser import parse_bilingual_answer
from shadowlm.surface.surface import SurfaceUnavailableError

logger = logging.getLogger(__name__)

ResultSink    = Callable[[UnitResult], Any]
PromptFactory = Callable[[WorkItem, str], str]


class MaxRetriesExceededError(Exception):
    """Una unidad agotó sus intentos. Detiene el batch completo."""

    def __init__(self, item_id: int, language: str, attempts: int, last_error: Exception):
        self.item_id    = item_id
        self.language   = language
        self.attempts   = attempts
        self.last_error = last_error
        super().__init__(
            f"Ticket #{item_id} ({language}) falló tras {attempts} intentos: {last_error}"
        )


class BatchTaskExecutor:
    """
    Recorre ítems × idiomas de forma estrictamente secuencial.

    Flujo por unidad:
    1. Checkpoint de cancelación
    2. progreso +1 (antes del skip: el progreso cuenta unidades consideradas)
    3. Skip si la variante ya existe
    4. Hasta N intentos de consulta → parseo → sink, con pausa entre fallos
    5. Último intento fallido → AbortSignal activado, batch detenido

    La finalización (refresco, limpieza de selección, línea final) ocurre siempre.
    """

    def __init__(
        self,
        protocol:        StreamingQueryProtocol,
        reporter:        Optional[ProgressReporter] = None,
        abort:           Optional[AbortSignal]      = None,
        retry_policy:    Optional[RetryPolicy]      = None,
        result_sink:     Optional[ResultSink]       = None,
        refresh_items:   Optional[Callable[[], Any]] = None,
        clear_selection: Optional[Callable[[], Any]] = None,
        prompt_factory:  PromptFactory = build_translation_prompt,
    ):
        self._protocol        = protocol
        self._reporter        = reporter or ProgressReporter()
        self._abort           = abort or AbortSignal()
        self._retry           = retry_policy or RetryPolicy()
        self._result_sink     = result_sink
        self._refresh_items   = refresh_items
        self._clear_selection = clear_selection
        self._prompt_factory  = prompt_factory

    @property
    def protocol(self) -> StreamingQueryProtocol:
        return self._protocol

    @property
    def reporter(self) -> ProgressReporter:
        return self._reporter

    @property
    def abort(self) -> AbortSignal:
        return self._abort

    async def run_batch(
        self,
        items:             list[WorkItem],
        target_languages:  list[str],
        existing_variants: Optional[Mapping[int, Iterable[str]]] = None,
    ) -> Optional[BatchOutcome]:
        """
        Ejecuta el batch. Devuelve None si la superficie ya estaba ocupada
        (sin tocar el progreso).

        existing_variants: item_id → idiomas ya disponibles. Si no se pasa,
        se usa available_langs de cada ítem.
        """
        surface = self._protocol.surface
        if surface.processing:
            logger.warning("Batch ignorado: la superficie ya está procesando otra conversación")
            return None

        surface.processing = True
        self._abort.clear()

        languages = list(target_languages)
        jobs      = [BatchJob(item_id=item.id, target_languages=languages) for item in items]
        error: Optional[Exception] = None

        self._reporter.start(len(items) * len(languages))
        logger.info("Batch iniciado: %d ítems × %d idiomas", len(items), len(languages))

        try:
            for item, job in zip(items, jobs):
                if self._abort.is_set():
                    break
                job.state = JobState.RUNNING
                existing  = _existing_for(item, existing_variants)

                for index, language in enumerate(languages):
                    if self._abort.is_set():
                        break

                    job.current_language_index = index
                    self._reporter.advance()

                    if language in existing:
                        logger.debug("Ticket #%s (%s) ya existe, se omite", item.id, language)
                        job.units[language] = JobState.SKIPPED
                        continue

                    try:
                        await self._run_unit(item, language, job)
                    except MaxRetriesExceededError as e:
                        error = e
                        self._abort.set()
                        break
                    except SurfaceUnavailableError as e:
                        self._reporter.log(f"❌ [Batch] Superficie no disponible: {e}. Abortando.")
                        error = e
                        self._abort.set()
                        break

                job.resolve()

        except Exception as e:
            logger.error("[Batch] Error inesperado: %s: %s", type(e).__name__, e)
            self._reporter.log(f"❌ [Batch] Error: {e}")
            error = e

        finally:
            aborted = self._abort.is_set() or error is not None
            if aborted:
                self._reporter.log("🛑 Batch de traducción detenido.")
            else:
                self._reporter.log("✅ Batch de traducción completado.")

            await _notify(self._refresh_items, "refresh_items")
            await _notify(self._clear_selection, "clear_selection")
            surface.processing = False

        return BatchOutcome(
            jobs     = jobs,
            progress = self._reporter.snapshot(),
            aborted  = aborted,
            error    = error,
        )

    # ------------------------------------------------------------------
    # Unidad de trabajo
    # ------------------------------------------------------------------

    async def _run_unit(self, item: WorkItem, language: str, job: BatchJob) -> bool:
        """
        Intenta la unidad hasta max_attempts veces.
        True si tuvo éxito; False si se canceló entre intentos.
        Lanza MaxRetriesExceededError al agotar los intentos.
        SurfaceUnavailableError se propaga en el primer intento.
        """
        job.units[language] = JobState.RUNNING
        job.retry_count     = 0
        max_attempts        = self._retry.max_attempts

        for attempt in range(1, max_attempts + 1):
            if attempt > 1 and self._abort.is_set():
                logger.info("Ticket #%s (%s): reintentos cancelados", item.id, language)
                job.units[language] = JobState.PENDING
                return False

            try:
                await self._attempt(item, language)
                job.units[language] = JobState.SUCCEEDED
                return True

            except SurfaceUnavailableError:
                # Fatal: no se reintenta
                job.units[language] = JobState.FAILED
                raise

            except Exception as e:
                job.retry_count = attempt
                logger.warning(
                    "Ticket #%s (%s) intento %d/%d fallido: %s: %s",
                    item.id, language, attempt, max_attempts, type(e).__name__, e,
                )
                if attempt >= max_attempts:
                    job.units[language] = JobState.FAILED
                    self._reporter.log(
                        f"❌ [Batch] Ticket #{item.id} falló tras {max_attempts} intentos. Abortando."
                    )
                    raise MaxRetriesExceededError(item.id, language, attempt, e) from e

                self._reporter.log(
                    f"⚠️ [Batch] Ticket #{item.id} intento {attempt} fallido. Reintentando..."
                )
                await asyncio.sleep(self._retry.retry_delay_seconds)

        return False

    async def _attempt(self, item: WorkItem, language: str) -> UnitResult:
        """Una consulta completa: stream hasta el evento final, parseo y entrega."""
        prompt = self._prompt_factory(item, language)

        final = None
        async for event in self._protocol.query(prompt, self._abort):
            final = event

        if final is None:
            raise QueryError("El stream terminó sin evento final")
        if final.status is StreamStatus.ERROR:
            raise QueryError(final.text)
        if not final.text.strip():
            raise QueryError("Respuesta vacía")

        answer = parse_bilingual_answer(final.text)
        result = UnitResult(
            item_id        = item.id,
            language       = language,
            target_text    = answer.target_text,
            reference_text = answer.reference_text,
            parsed         = answer.parsed,
            raw_text       = final.text,
        )

        if self._result_sink is not None:
            outcome = self._result_sink(result)
            if inspect.isawaitable(outcome):
                await outcome

        logger.debug("Ticket #%s (%s) completado", item.id, language)
        return result


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _existing_for(
    item:              WorkItem,
    existing_variants: Optional[Mapping[int, Iterable[str]]],
) -> set[str]:
    if existing_variants is None:
        return set(item.available_langs)
    return set(existing_variants.get(item.id, ()))


async def _notify(callback: Optional[Callable[[], Any]], name: str) -> None:
    """Callbacks de finalización: un fallo se registra pero no impide el resto."""
    if callback is None:
        return
    try:
        outcome = callback()
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as e:
        logger.warning("Callback de finalización '%s' falló: %s", name, e)
