# tests/test_reply_runner.py
import json
from unittest.mock import MagicMock

import pytest

from shadowlm.query.response_parser import UNPARSED_SENTINEL
from shadowlm.reply_runner import ReplyTaskRunner

REQUEST = {
    "ticketId":    7,
    "externalId":  "FD-7",
    "subject":     "Reembolso",
    "description": None,
    "conversations": [
        {"id": 1, "bodyText": "Quiero mi dinero", "incoming": True},
        {"id": 2, "body_text": "Lo revisamos", "incoming": False},
    ],
}


def make_runner(protocol, notebook_id="nb-1", template=None):
    sink   = MagicMock()
    runner = ReplyTaskRunner(
        protocol        = protocol,
        sink            = sink,
        notebook_id     = notebook_id,
        prompt_template = template,
    )
    return runner, sink


class TestReplyTaskRunner:

    @pytest.mark.asyncio
    async def test_respuesta_enviada(self, stub_protocol):
        protocol = stub_protocol('["We will refund you", "我们会退款"]')
        runner, sink = make_runner(protocol)

        answer = await runner.handle(json.dumps(REQUEST))

        assert answer.target_text == "We will refund you"
        sink.submit_reply.assert_called_once_with(7, "我们会退款", "We will refund you")
        sink.complete_task.assert_called_once_with(7, True)
        protocol.surface.show.assert_awaited_once()
        assert protocol.surface.processing is False
        assert runner.reporter.lines[-1] == "✅ Respuesta del ticket #7 enviada correctamente."

    @pytest.mark.asyncio
    async def test_prompt_con_plantilla_y_ambos_formatos_de_cuerpo(self, stub_protocol):
        protocol = stub_protocol('["a", "b"]')
        runner, _ = make_runner(protocol, template="Contesta:\n${ticket_content}")

        await runner.handle(REQUEST)

        prompt = protocol.prompts[0]
        assert prompt.startswith("Contesta:\nSubject: Reembolso")
        assert "Description: No description" in prompt
        assert "Customer: Quiero mi dinero" in prompt
        assert "Agent: Lo revisamos" in prompt

    @pytest.mark.asyncio
    async def test_ocupado_descarta_la_peticion(self, stub_protocol):
        protocol = stub_protocol('["a", "b"]')
        protocol.surface.processing = True
        runner, sink = make_runner(protocol)

        assert await runner.handle(REQUEST) is None
        assert protocol.prompts == []
        sink.complete_task.assert_not_called()
        assert protocol.surface.processing is True

    @pytest.mark.asyncio
    async def test_sin_notebook_configurado(self, stub_protocol):
        protocol = stub_protocol('["a", "b"]')
        runner, sink = make_runner(protocol, notebook_id=None)

        assert await runner.handle(REQUEST) is None
        assert protocol.prompts == []
        assert "notebook_id no configurado" in runner.reporter.lines[-1]

    @pytest.mark.asyncio
    async def test_error_del_stream_marca_la_tarea_fallida(self, stub_protocol, stub_error_event):
        protocol = stub_protocol(stub_error_event("Error de la superficie: caída"))
        runner, sink = make_runner(protocol)

        assert await runner.handle(REQUEST) is None
        sink.submit_reply.assert_not_called()
        sink.complete_task.assert_called_once_with(7, False)
        assert protocol.surface.processing is False
        assert "caída" in runner.reporter.lines[-1]

    @pytest.mark.asyncio
    async def test_respuesta_vacia_es_fallo(self, stub_protocol):
        protocol = stub_protocol("")
        runner, sink = make_runner(protocol)

        assert await runner.handle(REQUEST) is None
        sink.complete_task.assert_called_once_with(7, False)

    @pytest.mark.asyncio
    async def test_respuesta_no_parseable_usa_el_centinela(self, stub_protocol):
        protocol = stub_protocol("Respuesta libre sin JSON")
        runner, sink = make_runner(protocol)

        await runner.handle(REQUEST)

        sink.submit_reply.assert_called_once_with(7, UNPARSED_SENTINEL, "Respuesta libre sin JSON")

    @pytest.mark.asyncio
    async def test_payload_invalido_libera_el_guard(self, stub_protocol):
        protocol = stub_protocol('["a", "b"]')
        runner, sink = make_runner(protocol)

        assert await runner.handle("{no es json") is None
        sink.complete_task.assert_not_called()
        assert protocol.surface.processing is False
