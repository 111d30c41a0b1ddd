# tests/query/test_bilingual_parser.py
from shadowlm.query.response_parser import (
    UNPARSED_SENTINEL,
    parse_bilingual_answer,
    try_parse_pair,
)


class TestBilingualParser:

    def test_json_estricto(self):
        answer = parse_bilingual_answer('["Hello", "你好"]')
        assert answer.target_text == "Hello"
        assert answer.reference_text == "你好"
        assert answer.parsed is True

    def test_texto_alrededor_del_array(self):
        raw = 'Aquí tienes:\n["Hi there", "你好"]\nEspero que ayude.'
        answer = parse_bilingual_answer(raw)
        assert answer.target_text == "Hi there"
        assert answer.reference_text == "你好"

    def test_array_con_mas_de_dos_elementos(self):
        answer = parse_bilingual_answer('["a", "b", "c"]')
        assert (answer.target_text, answer.reference_text) == ("a", "b")

    def test_regex_para_saltos_de_linea_sin_escapar(self):
        # El salto de línea literal hace inválido el JSON estricto
        raw = '["linea uno\nlinea dos", "第一行\n第二行"]'
        answer = parse_bilingual_answer(raw)
        assert answer.target_text == "linea uno\nlinea dos"
        assert answer.reference_text == "第一行\n第二行"
        assert answer.parsed is True

    def test_regex_desescapa_comillas_y_saltos(self):
        raw = '["Dijo \\"hola\\"\\nadiós\nfin", "ref"]'
        answer = parse_bilingual_answer(raw)
        assert answer.target_text == 'Dijo "hola"\nadiós\nfin'

    def test_sin_array_usa_texto_crudo_y_centinela(self):
        raw = "Lo siento, no puedo ayudar con eso."
        answer = parse_bilingual_answer(raw)
        assert answer.target_text == raw
        assert answer.reference_text == UNPARSED_SENTINEL
        assert answer.parsed is False

    def test_array_de_un_solo_elemento_degrada(self):
        answer = parse_bilingual_answer('["solo uno"]')
        assert answer.reference_text == UNPARSED_SENTINEL
        assert answer.target_text == '["solo uno"]'

    def test_elementos_no_texto_se_serializan(self):
        answer = parse_bilingual_answer('[{"a": 1}, 2]')
        assert answer.target_text == '{"a": 1}'
        assert answer.reference_text == "2"

    def test_texto_vacio_no_lanza(self):
        answer = parse_bilingual_answer("")
        assert answer.parsed is False


class TestTryParsePair:

    def test_stream_parcial_no_da_par(self):
        assert try_parse_pair('["Hello", "你') is None

    def test_par_completo(self):
        assert try_parse_pair('["a", "b"]') == ("a", "b")

    def test_sin_corchetes(self):
        assert try_parse_pair("nada") is None
