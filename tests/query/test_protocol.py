# tests/query/test_protocol.py
import json

import pytest

from shadowlm.abort import AbortSignal
from shadowlm.query.models import QueryState, QueryTimings, StreamStatus
from shadowlm.query.protocol import is_balanced
from shadowlm.surface.surface import SurfaceUnavailableError


def statuses(events) -> list[StreamStatus]:
    return [e.status for e in events]


def assert_no_consecutive_duplicates(events):
    for prev, curr in zip(events, events[1:]):
        assert prev.text != curr.text


# ------------------------------------------------------------------
# Heurística de completitud
# ------------------------------------------------------------------

class TestIsBalanced:

    def test_array_completo(self):
        assert is_balanced('["hola", "你好"]') is True

    def test_array_abierto(self):
        assert is_balanced('["hola", "你') is False

    def test_sin_corchetes_no_cuenta_como_completo(self):
        assert is_balanced("texto sin array") is False

    def test_corchetes_anidados(self):
        assert is_balanced('["a [b]", "c"]') is True


# ------------------------------------------------------------------
# Stream
# ------------------------------------------------------------------

class TestStream:

    @pytest.mark.asyncio
    async def test_streaming_y_un_unico_evento_final(self, fake_page, make_protocol, collect_events):
        backend = fake_page(snapshots=[
            ('["Hel', False),
            ('["Hello", "你', False),
            ('["Hello", "你好"]', False),
            ('["Hello", "你好"]', True),
        ])
        protocol = make_protocol(backend)

        events = await collect_events(protocol.query("Traduce"))

        assert statuses(events) == [
            StreamStatus.STREAMING, StreamStatus.STREAMING, StreamStatus.COMPLETE,
        ]
        assert events[-1].text == '["Hello", "你好"]'
        assert protocol.state is QueryState.COMPLETE
        assert_no_consecutive_duplicates(events)

    @pytest.mark.asyncio
    async def test_snapshots_repetidos_no_se_emiten(self, fake_page, make_protocol, collect_events):
        backend = fake_page(snapshots=[
            ("", False),
            ('["a', False),
            ('["a', False),
            ('["ab', False),
            ('["ab", "c"]', True),
        ])

        events = await collect_events(make_protocol(backend).query("p"))

        assert [e.text for e in events] == ['["a', '["ab', '["ab", "c"]']
        assert_no_consecutive_duplicates(events)

    @pytest.mark.asyncio
    async def test_completo_en_el_primer_snapshot(self, fake_page, make_protocol, collect_events):
        backend = fake_page(snapshots=[('["x", "y"]', True)])

        events = await collect_events(make_protocol(backend).query("p"))

        assert len(events) == 1
        assert events[0].status is StreamStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_timeout_blando_fuerza_la_finalizacion(self, fake_page, make_protocol, collect_events):
        # Array válido pero la página nunca vuelve a estar idle
        backend = fake_page(snapshots=[('["a', False), ('["a", "b"]', False)])

        events = await collect_events(make_protocol(backend).query("p"))

        assert statuses(events) == [StreamStatus.STREAMING, StreamStatus.COMPLETE]
        assert events[-1].text == '["a", "b"]'
        # 1 snapshot abierto + 1 válido + soft_idle_cycles sin cambios
        assert backend.kinds.count("snapshot") == 2 + 3

    @pytest.mark.asyncio
    async def test_texto_valido_que_cambia_emite_el_ultimo(
        self, fake_page, make_protocol, collect_events
    ):
        backend = fake_page(snapshots=[
            ('["a", "b"]', False),
            ('["a", "bc"]', False),
        ])

        events = await collect_events(make_protocol(backend).query("p"))

        assert events[-1].status is StreamStatus.COMPLETE
        assert events[-1].text == '["a", "bc"]'

    @pytest.mark.asyncio
    async def test_timeout_blando_con_texto_oscilante(self, fake_page, make_protocol, collect_events):
        # El renderizado cambia espacios en cada tick sin llegar a idle
        backend = fake_page(snapshots=[
            ('["a","b"]', False) if i % 2 == 0 else ('["a", "b"]', False)
            for i in range(30)
        ])

        events = await collect_events(make_protocol(backend).query("p"))

        assert statuses(events) == [StreamStatus.COMPLETE]
        assert is_balanced(events[-1].text)
        # primer snapshot válido + soft_idle_cycles, sin llegar al timeout duro
        assert backend.kinds.count("snapshot") == 1 + 3

    @pytest.mark.asyncio
    async def test_timeout_duro_termina_con_error(self, fake_page, make_protocol, collect_events):
        backend = fake_page(snapshots=[('["sin cerrar', False)])

        events = await collect_events(make_protocol(backend).query("p"))

        assert statuses(events) == [StreamStatus.STREAMING, StreamStatus.ERROR]
        assert "QueryTimeoutError" in events[-1].text
        assert backend.kinds.count("snapshot") == 20

    @pytest.mark.asyncio
    async def test_cancelacion_termina_con_error(self, fake_page, make_protocol, collect_events):
        backend = fake_page(snapshots=[('["a', False)])
        abort   = AbortSignal()
        abort.set()

        events = await collect_events(make_protocol(backend).query("p", abort))

        assert len(events) == 1
        assert events[0].status is StreamStatus.ERROR
        assert "cancelada" in events[0].text
        assert "snapshot" not in backend.kinds


# ------------------------------------------------------------------
# Envío y errores fatales
# ------------------------------------------------------------------

class TestSubmit:

    @pytest.mark.asyncio
    async def test_el_prompt_viaja_en_el_script(self, fake_page, make_protocol, collect_events):
        backend = fake_page(snapshots=[('["a", "b"]', True)])

        await collect_events(make_protocol(backend).query('Dime "algo"\ncon salto'))

        submit = next(s for s in backend.scripts if "shadowlm:submit" in s)
        assert json.dumps('Dime "algo"\ncon salto', ensure_ascii=False) in submit

    @pytest.mark.asyncio
    async def test_sin_input_es_error_fatal(self, fake_page, make_protocol, collect_events):
        backend  = fake_page(has_input=False)
        protocol = make_protocol(backend)

        events = await collect_events(protocol.query("p"))

        assert len(events) == 1
        assert events[0].status is StreamStatus.ERROR
        assert "NoInputElementError" in events[0].text
        assert "snapshot" not in backend.kinds
        assert protocol.state is QueryState.ERROR

    @pytest.mark.asyncio
    async def test_sin_boton_de_envio_es_error_fatal(self, fake_page, make_protocol, collect_events):
        backend = fake_page(has_submit=False)

        events = await collect_events(make_protocol(backend).query("p"))

        assert statuses(events) == [StreamStatus.ERROR]
        assert "SubmissionFailureError" in events[0].text

    @pytest.mark.asyncio
    async def test_envio_sin_confirmacion_es_error(self, fake_page, make_protocol, collect_events):
        backend = fake_page(silent={"submit"})

        events = await collect_events(make_protocol(backend).query("p"))

        assert statuses(events) == [StreamStatus.ERROR]
        assert "SubmissionFailureError" in events[0].text

    @pytest.mark.asyncio
    async def test_superficie_no_disponible_se_propaga(
        self, fake_page, make_protocol, collect_events
    ):
        backend  = fake_page(fail_open=True)
        protocol = make_protocol(backend)

        with pytest.raises(SurfaceUnavailableError):
            await collect_events(protocol.query("p"))

        assert len(backend.opened) == 1
        assert backend.scripts == []
        assert protocol.state is QueryState.ERROR

    @pytest.mark.asyncio
    async def test_la_peticion_queda_registrada(self, fake_page, make_protocol, collect_events, handle):
        backend  = fake_page(snapshots=[('["a", "b"]', True)])
        protocol = make_protocol(backend)

        await collect_events(protocol.query("Traduce esto"))

        assert protocol.request.prompt == "Traduce esto"
        assert protocol.request.handle == handle
        assert backend.opened == [handle]


# ------------------------------------------------------------------
# Limpieza del historial
# ------------------------------------------------------------------

class TestClearHistory:

    @pytest.mark.asyncio
    async def test_historial_vacio_un_solo_ciclo(self, fake_page, make_protocol, collect_events):
        backend = fake_page(snapshots=[('["a", "b"]', True)])

        await collect_events(make_protocol(backend).query("p"))

        assert backend.kinds[:2] == ["clear_history", "submit"]

    @pytest.mark.asyncio
    async def test_borra_y_verifica(self, fake_page, make_protocol, collect_events):
        backend = fake_page(snapshots=[('["a", "b"]', True)], history_present=True)

        await collect_events(make_protocol(backend).query("p"))

        # borrar → comprobar vacío → enviar
        assert backend.kinds[:3] == ["clear_history", "clear_history", "submit"]

    @pytest.mark.asyncio
    async def test_agotar_ciclos_no_es_fatal(self, fake_page, make_protocol, collect_events, caplog):
        backend = fake_page(
            snapshots       = [('["a", "b"]', True)],
            history_present = True,
            clear_failures  = 10,
        )

        events = await collect_events(make_protocol(backend).query("p"))

        assert backend.kinds.count("clear_history") == 3
        assert "submit" in backend.kinds
        assert events[-1].status is StreamStatus.COMPLETE
        assert "No se pudo confirmar el historial vacío" in caplog.text

    @pytest.mark.asyncio
    async def test_espera_el_menu_antes_de_dar_el_ciclo_por_perdido(
        self, fake_page, make_protocol, collect_events, caplog
    ):
        # La página tarda en abrir el menú de borrado más que result_timeout
        timings = QueryTimings(
            poll_interval_seconds  = 0,
            max_poll_cycles        = 5,
            clear_settle_seconds   = 0,
            result_timeout_seconds = 0.05,
            input_settle_ms        = 0,
            menu_wait_ms           = 100,
        )
        backend = fake_page(
            snapshots       = [('["a", "b"]', True)],
            history_present = True,
            clear_delay     = 0.2,
        )
        caplog.set_level("DEBUG", logger="shadowlm.query.protocol")

        events = await collect_events(make_protocol(backend, timings).query("p"))

        assert "Historial borrado en ciclo 1" in caplog.text
        assert "sin respuesta" not in caplog.text
        assert backend.kinds[:3] == ["clear_history", "clear_history", "submit"]
        assert events[-1].status is StreamStatus.COMPLETE
