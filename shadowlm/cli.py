# shadowlm/cli.py
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from shadowlm.batch.models import UnitResult, WorkItem
from shadowlm.config_loader import load_config
from shadowlm.factory import build_executor, build_protocol, build_reply_runner, build_surface
from shadowlm.query.models import StreamStatus
from shadowlm.query.response_parser import parse_bilingual_answer, try_parse_pair
from shadowlm.surface.surface import SurfaceUnavailableError


# Carga .env una sola vez, antes que cualquier otra cosa
load_dotenv()

_PROMPT_FORMATS = {".txt", ".md"}
_JSON_FORMATS   = {".json"}

# Código de salida cuando el batch se detiene antes de terminar
_EXIT_ABORTED = 3


# ------------------------------------------------------------------
# Grupo raíz
# ------------------------------------------------------------------

@click.group()
@click.version_option(package_name="shadowlm")
@click.option("--verbose", "-v", is_flag=True, help="Log de depuración por stderr")
def main(verbose: bool):
    """
    shadowlm: consultas automatizadas sobre NotebookLM.

    Controla una ventana de navegador con sesión persistente, envía prompts,
    sigue la respuesta en streaming y extrae el par bilingüe.
    """
    logging.basicConfig(
        level  = logging.DEBUG if verbose else logging.WARNING,
        format = "%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


_config_option = click.option(
    "--config", "config_path",
    default = None,
    type    = click.Path(exists=False),
    help    = "Ruta al config YAML (por defecto ~/.shadowlm/config.yaml)",
)


# ------------------------------------------------------------------
# shadowlm query
# ------------------------------------------------------------------

@main.command()
@click.option("--prompt", "-p", default=None, help="Texto del prompt")
@click.option(
    "--prompt-file",
    default = None,
    type    = click.Path(exists=False),   # validamos nosotros para mejor mensaje
    help    = "Archivo con el prompt (.txt, .md)",
)
@_config_option
def query(prompt: Optional[str], prompt_file: Optional[str], config_path: Optional[str]):
    """Envía un prompt y muestra la respuesta en streaming."""

    # ── Validaciones de entrada ───────────────────────────────────
    if bool(prompt) == bool(prompt_file):
        _abort("Indica exactamente uno de --prompt o --prompt-file.")
    if prompt_file:
        _validate_file(prompt_file, _PROMPT_FORMATS)
        prompt = Path(prompt_file).read_text(encoding="utf-8")
    if not prompt.strip():
        _abort("El prompt no puede estar vacío.")

    config   = _load(config_path)
    protocol = build_protocol(config)

    # ── Ejecutar ──────────────────────────────────────────────────
    final = _run(_stream_query(protocol, prompt))

    if final is None:
        _error("La consulta terminó sin respuesta.")
        sys.exit(1)
    if final.status is StreamStatus.ERROR:
        _error(final.text)
        sys.exit(1)

    _print_answer(final.text)


async def _stream_query(protocol, prompt: str):
    final     = None
    previewed = False
    try:
        # init explícito: un fallo aquí es de la superficie, no de la consulta
        await protocol.surface.init()
        async for event in protocol.query(prompt):
            final = event
            if event.status is StreamStatus.STREAMING:
                click.echo(f"[shadowlm] … {len(event.text)} caracteres recibidos")
                if not previewed and try_parse_pair(event.text):
                    click.echo("[shadowlm] ↳ par bilingüe reconocible, esperando a que termine")
                    previewed = True
    finally:
        await protocol.surface.close()
    return final


# ------------------------------------------------------------------
# shadowlm batch
# ------------------------------------------------------------------

@main.command()
@click.option(
    "--items", "-i", "items_path",
    required = True,
    type     = click.Path(exists=False),
    help     = "JSON con la lista de tickets",
)
@click.option(
    "--lang", "-l", "languages",
    multiple = True,
    metavar  = "LANG",
    help     = "Idioma destino (repetible). Por defecto, los del config",
)
@click.option(
    "--output", "-o",
    default = None,
    type    = click.Path(exists=False),
    help    = "Archivo JSONL para los resultados (por defecto stdout)",
)
@_config_option
def batch(items_path: str, languages: tuple[str, ...], output: Optional[str], config_path: Optional[str]):
    """Traduce un lote de tickets a uno o varios idiomas."""

    _validate_file(items_path, _JSON_FORMATS)
    for lang in languages:
        _validate_lang(lang, "--lang")

    items  = _load_items(items_path)
    config = _load(config_path)
    langs  = [lang.lower() for lang in languages] or config.target_languages

    sink     = _JsonLinesSink(output)
    executor = build_executor(config, result_sink=sink.write)
    executor.reporter.on_line(lambda line: click.echo(f"[shadowlm] {line}"))

    try:
        outcome = _run(_run_batch(executor, items, langs))
    finally:
        sink.close()

    if outcome is None:
        _error("La superficie está ocupada con otra conversación.")
        sys.exit(1)

    click.echo(
        f"[shadowlm] Progreso {outcome.progress.current}/{outcome.progress.total} · "
        f"completadas {outcome.succeeded} · omitidas {outcome.skipped}"
    )
    if outcome.aborted:
        if isinstance(outcome.error, SurfaceUnavailableError):
            _surface_unavailable(outcome.error)
        if outcome.error is not None:
            _error(str(outcome.error))
        sys.exit(_EXIT_ABORTED)


async def _run_batch(executor, items: list[WorkItem], langs: list[str]):
    surface = executor.protocol.surface
    try:
        await surface.init()
        return await executor.run_batch(items, langs)
    finally:
        await surface.close()


class _JsonLinesSink:
    """Escribe cada unidad completada como una línea JSON."""

    def __init__(self, path: Optional[str]):
        self._file = Path(path).open("a", encoding="utf-8") if path else None

    def write(self, result: UnitResult) -> None:
        line = json.dumps({
            "ticket_id": result.item_id,
            "lang":      result.language,
            "target":    result.target_text,
            "reference": result.reference_text,
            "parsed":    result.parsed,
        }, ensure_ascii=False)
        if self._file is not None:
            self._file.write(line + "\n")
            self._file.flush()
        else:
            click.echo(line)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()


# ------------------------------------------------------------------
# shadowlm reply
# ------------------------------------------------------------------

@main.command()
@click.option(
    "--request", "-r", "request_path",
    required = True,
    type     = click.Path(exists=False),
    help     = "JSON con la petición de respuesta (ticketId, subject, description, conversations)",
)
@_config_option
def reply(request_path: str, config_path: Optional[str]):
    """Genera la respuesta bilingüe de un ticket."""

    _validate_file(request_path, _JSON_FORMATS)
    payload = Path(request_path).read_text(encoding="utf-8")

    config = _load(config_path)
    sink   = _EchoReplySink()
    runner = build_reply_runner(sink, config)
    runner.reporter.on_line(lambda line: click.echo(f"[shadowlm] {line}"))

    answer = _run(_run_reply(runner, payload))
    if answer is None:
        sys.exit(1)


async def _run_reply(runner, payload: str):
    surface = runner.protocol.surface
    try:
        await surface.init()
        return await runner.handle(payload)
    finally:
        await surface.close()


class _EchoReplySink:
    """Sink de consola: sin backend de tickets, la respuesta se imprime."""

    def submit_reply(self, ticket_id: int, zh_reply: str, target_reply: str) -> None:
        _print_pair(target_reply, zh_reply, title=f"Respuesta para el ticket #{ticket_id}")

    def complete_task(self, ticket_id: int, success: bool) -> None:
        logging.getLogger(__name__).debug("Ticket #%s completado (success=%s)", ticket_id, success)


# ------------------------------------------------------------------
# shadowlm show / hide
# ------------------------------------------------------------------

@main.command()
@_config_option
def show(config_path: Optional[str]):
    """Muestra la ventana (p. ej. para iniciar sesión en Google)."""
    config = _load(config_path)
    _run(_toggle(config, visible=True))


@main.command()
@_config_option
def hide(config_path: Optional[str]):
    """Abre la superficie minimizada y comprueba que responde."""
    config = _load(config_path)
    _run(_toggle(config, visible=False))


async def _toggle(config, visible: bool) -> None:
    surface = build_surface(config)
    surface.subscribe(
        lambda state: click.echo(f"[shadowlm] Superficie {'visible' if state else 'oculta'}")
    )
    try:
        if visible:
            await surface.show()
            await asyncio.to_thread(click.pause, "[shadowlm] Pulsa cualquier tecla para cerrar...")
            await surface.hide()
        else:
            await surface.init()
            await surface.hide()
    finally:
        await surface.close()


# ------------------------------------------------------------------
# Helpers de ejecución
# ------------------------------------------------------------------

def _run(coro):
    """asyncio.run con el mapeo de errores a códigos de salida."""
    try:
        return asyncio.run(coro)

    except SurfaceUnavailableError as e:
        _surface_unavailable(e)

    except KeyboardInterrupt:
        click.echo("\n[shadowlm] Proceso interrumpido.")
        sys.exit(0)

    except Exception as e:
        _error(f"Error inesperado: {type(e).__name__}: {e}")
        sys.exit(1)


def _surface_unavailable(error: SurfaceUnavailableError) -> None:
    _error(
        f"Superficie no disponible. {error}\n"
        f"Comprueba la conexión y ejecuta 'shadowlm show' para iniciar sesión."
    )
    sys.exit(2)


def _load(config_path: Optional[str]):
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        _abort(str(e))


def _load_items(path: str) -> list[WorkItem]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        _abort(f"JSON inválido en {path}: {e}")

    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list) or not data:
        _abort(f"{path} no contiene ninguna lista de tickets.")
    return [WorkItem.from_dict(entry) for entry in data]


# ------------------------------------------------------------------
# Helpers de validación
# ------------------------------------------------------------------

def _validate_file(path: str, formats: set[str]) -> None:
    """Verifica existencia y formato del archivo."""
    p = Path(path)

    if not p.exists():
        _abort(f"Archivo no encontrado: {path}")

    if not p.is_file():
        _abort(f"La ruta no es un archivo: {path}")

    if p.suffix.lower() not in formats:
        supported = ", ".join(sorted(formats))
        _abort(
            f"Formato no soportado: '{p.suffix}'\n"
            f"Formatos disponibles: {supported}"
        )


def _validate_lang(code: str, option: str) -> None:
    """Valida que el código de idioma sea razonable."""
    code = code.strip()

    if not code:
        _abort(f"{option} no puede estar vacío.")

    if not code.replace("-", "").isalpha():
        _abort(
            f"{option} contiene caracteres inválidos: '{code}'\n"
            f"Ejemplos válidos: en, cn, jp, zh-CN"
        )

    if len(code) > 10:
        _abort(f"{option}: código de idioma demasiado largo: '{code}'")


# ------------------------------------------------------------------
# Helpers de output
# ------------------------------------------------------------------

def _print_answer(raw_text: str) -> None:
    answer = parse_bilingual_answer(raw_text)
    if not answer.parsed:
        click.echo(click.style("[shadowlm] ⚠ Sin par bilingüe: se muestra el texto crudo", fg="yellow"))
    _print_pair(answer.target_text, answer.reference_text, title="Respuesta")


def _print_pair(target: str, reference: str, title: str) -> None:
    click.echo("")
    click.echo("─" * 50)
    click.echo(f"[shadowlm] {title}")
    click.echo("─" * 50)
    click.echo(target)
    click.echo("─" * 50)
    click.echo(reference)
    click.echo("─" * 50)


def _abort(message: str) -> None:
    """Error de validación: culpa del usuario."""
    click.echo(click.style(f"[shadowlm] Error: {message}", fg="red"), err=True)
    sys.exit(1)


def _error(message: str) -> None:
    """Error de sistema: no es culpa del usuario."""
    click.echo(click.style(f"[shadowlm] {message}", fg="red"), err=True)
