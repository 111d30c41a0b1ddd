# tests/conftest.py
import asyncio
import json
import re
from unittest.mock import AsyncMock, MagicMock

import pytest

from shadowlm.query.models import QueryTimings, StreamEvent, StreamStatus
from shadowlm.query.protocol import StreamingQueryProtocol
from shadowlm.surface.base import AutomationBackend
from shadowlm.surface.bridge import ScriptBridge
from shadowlm.surface.models import SurfaceHandle
from shadowlm.surface.surface import RemoteAutomationSurface

_HEADER_RE = re.compile(r"^/\* shadowlm:(\w+) rid=(\w+) \*/")


# ------------------------------------------------------------------
# Backend de página simulado
# ------------------------------------------------------------------

class FakePageBackend(AutomationBackend):
    """
    Página remota guionizada. Lee la cabecera de cada script inyectado y
    responde por el sink de eventos igual que lo haría la página real.

    snapshots: lista de (texto, idle); cada snapshot consume uno y el último
    se repite indefinidamente.
    clear_delay: segundos que tarda en llegar el resultado de clear_history.
    """

    def __init__(
        self,
        snapshots=None,
        history_present: bool = False,
        clear_failures:  int  = 0,
        has_input:       bool = True,
        has_submit:      bool = True,
        fail_open:       bool = False,
        clear_delay:     float = 0,
        silent=(),
    ):
        self.snapshots       = list(snapshots or [])
        self.history_present = history_present
        self.clear_failures  = clear_failures
        self.has_input       = has_input
        self.has_submit      = has_submit
        self.fail_open       = fail_open
        self.clear_delay     = clear_delay
        self.silent          = set(silent)

        self.opened:       list[SurfaceHandle] = []
        self.visible_calls: list[bool] = []
        self.scripts:      list[str] = []
        self.kinds:        list[str] = []
        self.visible       = False
        self.closed        = False
        self._sink         = None

    def set_event_sink(self, sink) -> None:
        self._sink = sink

    async def open_surface(self, handle: SurfaceHandle) -> None:
        self.opened.append(handle)
        if self.fail_open:
            raise ConnectionError("sin red")

    async def set_visible(self, visible: bool) -> None:
        self.visible_calls.append(visible)
        self.visible = visible

    async def is_visible(self) -> bool:
        return self.visible

    async def close(self) -> None:
        self.closed = True

    async def execute_script(self, script: str) -> None:
        self.scripts.append(script)
        match = _HEADER_RE.match(script)
        if not match:
            return
        kind, rid = match.groups()
        self.kinds.append(kind)
        if kind in self.silent:
            return

        handler = getattr(self, f"_on_{kind}")
        payload = json.dumps({"rid": rid, **handler()})
        if kind == "clear_history" and self.clear_delay:
            # El script real espera al menú antes de reportar
            asyncio.get_running_loop().call_later(self.clear_delay, self.emit, "result", payload)
            return
        self.emit("result", payload)

    def emit(self, event: str, payload: str) -> None:
        if self._sink is not None:
            self._sink(event, payload)

    # ── Respuestas por tipo de script ────────────────────────────

    def _on_clear_history(self) -> dict:
        if not self.history_present:
            return {"state": "empty"}
        if self.clear_failures > 0:
            self.clear_failures -= 1
            return {"state": "failed", "reason": "no_delete_entry"}
        self.history_present = False
        return {"state": "cleared", "confirmed": True}

    def _on_submit(self) -> dict:
        if not self.has_input:
            return {"ok": False, "error": "no_input"}
        if not self.has_submit:
            return {"ok": False, "error": "no_submit"}
        return {"ok": True}

    def _on_snapshot(self) -> dict:
        if not self.snapshots:
            return {"text": "", "idle": False}
        text, idle = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        return {"text": text, "idle": idle}


# ------------------------------------------------------------------
# Protocolo simulado (para ejecutor, reply runner y CLI)
# ------------------------------------------------------------------

class StubProtocol:
    """
    Sustituto de StreamingQueryProtocol.
    Cada outcome es un str (respuesta completa), un StreamEvent suelto
    o una lista de StreamEvent. El último outcome se repite.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.prompts:  list[str] = []
        self.aborts:   list = []
        self.surface   = MagicMock()
        self.surface.processing = False
        self.surface.init  = AsyncMock()
        self.surface.show  = AsyncMock()
        self.surface.hide  = AsyncMock()
        self.surface.close = AsyncMock()
        self.on_query = None

    async def query(self, prompt, abort=None):
        self.prompts.append(prompt)
        self.aborts.append(abort)
        if self.on_query is not None:
            self.on_query(len(self.prompts))

        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, str):
            if len(outcome) > 1:
                yield StreamEvent(text=outcome[:1], status=StreamStatus.STREAMING)
            yield StreamEvent(text=outcome, status=StreamStatus.COMPLETE)
        elif isinstance(outcome, StreamEvent):
            yield outcome
        else:
            for event in outcome:
                yield event


def error_event(text: str = "Error de la superficie: boom") -> StreamEvent:
    return StreamEvent(text=text, status=StreamStatus.ERROR)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------

@pytest.fixture
def handle() -> SurfaceHandle:
    return SurfaceHandle(notebook_id="nb-123")


@pytest.fixture
def fast_timings() -> QueryTimings:
    return QueryTimings(
        poll_interval_seconds  = 0,
        max_poll_cycles        = 20,
        soft_idle_cycles       = 3,
        clear_history_cycles   = 3,
        clear_settle_seconds   = 0,
        result_timeout_seconds = 0.05,
        input_settle_ms        = 0,
        menu_wait_ms           = 0,
    )


@pytest.fixture
def make_protocol(handle, fast_timings):
    """Ensambla backend simulado → superficie → bridge → protocolo."""

    def _make(backend: FakePageBackend, timings: QueryTimings = None) -> StreamingQueryProtocol:
        surface = RemoteAutomationSurface(backend, handle, settle_seconds=0)
        return StreamingQueryProtocol(ScriptBridge(surface), timings=timings or fast_timings)

    return _make


@pytest.fixture
def fake_page():
    return FakePageBackend


@pytest.fixture
def stub_protocol():
    return StubProtocol


@pytest.fixture
def stub_error_event():
    return error_event


async def collect(stream) -> list:
    return [event async for event in stream]


@pytest.fixture
def collect_events():
    return collect

