# shadowlm/factory.py
from typing import Any, Callable, Optional

from shadowlm.abort import AbortSignal
from shadowlm.batch.executor import BatchTaskExecutor, ResultSink
from shadowlm.batch.progress import ProgressReporter
from shadowlm.config_loader import ShadowConfig, load_config
from shadowlm.query.protocol import StreamingQueryProtocol
from shadowlm.reply_runner import ReplySink, ReplyTaskRunner
from shadowlm.surface.base import AutomationBackend
from shadowlm.surface.bridge import ScriptBridge
from shadowlm.surface.models import SurfaceHandle
from shadowlm.surface.playwright_backend import PlaywrightBackend
from shadowlm.surface.surface import RemoteAutomationSurface


def build_protocol(
    config:  Optional[ShadowConfig]      = None,
    backend: Optional[AutomationBackend] = None,
) -> StreamingQueryProtocol:
    """
    Ensambla superficie → bridge → protocolo.
    Punto de entrada único para el CLI y los tests de integración.
    Sin backend explícito se usa Chromium vía Playwright.
    """
    config  = config or load_config()
    surface = build_surface(config, backend)
    return StreamingQueryProtocol(
        bridge  = ScriptBridge(surface),
        timings = config.timings,
        dom     = config.dom,
    )


def build_surface(
    config:  ShadowConfig,
    backend: Optional[AutomationBackend] = None,
) -> RemoteAutomationSurface:
    handle = SurfaceHandle(notebook_id=config.notebook_id, notebook_url=config.notebook_url)
    return RemoteAutomationSurface(
        backend        = backend or _build_backend(config),
        handle         = handle,
        settle_seconds = config.settle_seconds,
    )


def build_executor(
    config:          Optional[ShadowConfig]      = None,
    backend:         Optional[AutomationBackend] = None,
    reporter:        Optional[ProgressReporter]  = None,
    abort:           Optional[AbortSignal]       = None,
    result_sink:     Optional[ResultSink]        = None,
    refresh_items:   Optional[Callable[[], Any]] = None,
    clear_selection: Optional[Callable[[], Any]] = None,
) -> BatchTaskExecutor:
    config = config or load_config()
    return BatchTaskExecutor(
        protocol        = build_protocol(config, backend),
        reporter        = reporter,
        abort           = abort,
        retry_policy    = config.retry,
        result_sink     = result_sink,
        refresh_items   = refresh_items,
        clear_selection = clear_selection,
    )


def build_reply_runner(
    sink:     ReplySink,
    config:   Optional[ShadowConfig]      = None,
    backend:  Optional[AutomationBackend] = None,
    reporter: Optional[ProgressReporter]  = None,
) -> ReplyTaskRunner:
    config = config or load_config()
    return ReplyTaskRunner(
        protocol        = build_protocol(config, backend),
        sink            = sink,
        notebook_id     = config.notebook_id,
        prompt_template = config.prompt_template,
        reporter        = reporter,
    )


def _build_backend(config: ShadowConfig) -> AutomationBackend:
    browser = config.browser
    return PlaywrightBackend(
        user_data_dir = browser.user_data_dir,
        headless      = browser.headless,
        width         = browser.width,
        height        = browser.height,
    )
