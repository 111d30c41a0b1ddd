# query/response_parser.py
import json
import logging
import re
from typing import Optional

from shadowlm.query.models import ParsedAnswer

logger = logging.getLogger(__name__)

UNPARSED_SENTINEL = "(Parse failed, showing raw content)"

# Captura ["a", "b"] aunque el interior traiga saltos de línea sin escapar
_PAIR_RE = re.compile(r'^\[\s*"(.*?)"\s*,\s*"(.*?)"\s*\]$', re.DOTALL)


def parse_bilingual_answer(raw_text: str) -> ParsedAnswer:
    """
    Extrae el par (idioma destino, idioma de referencia) con degradación progresiva.

    Estrategia:
    1. JSON estricto del tramo entre el primer '[' y el último ']'
    2. Regex ["a","b"] para JSON malformado pero reconocible
    3. Texto crudo como destino + centinela como referencia

    Nunca lanza excepción: el resultado siempre está presente.
    """
    pair = try_parse_pair(raw_text)
    if pair is not None:
        return ParsedAnswer(target_text=pair[0], reference_text=pair[1])

    logger.warning(
        "Respuesta sin par bilingüe reconocible (%d chars). Usando texto crudo",
        len(raw_text or ""),
    )
    return ParsedAnswer(
        target_text    = raw_text,
        reference_text = UNPARSED_SENTINEL,
        parsed         = False,
    )


def try_parse_pair(raw_text: str) -> Optional[tuple[str, str]]:
    """Igual que parse_bilingual_answer pero sin degradación: None si no hay par."""
    candidate = _slice_array(raw_text or "")
    if candidate is None:
        return None

    # Intento 1: JSON estricto
    pair = _try_json(candidate)
    if pair is not None:
        return pair

    # Intento 2: regex (p. ej. saltos de línea sin escapar dentro de las cadenas)
    match = _PAIR_RE.match(candidate)
    if match:
        logger.debug("Par bilingüe recuperado por regex")
        return _unescape(match.group(1)), _unescape(match.group(2))

    return None


def _slice_array(text: str) -> Optional[str]:
    text  = text.strip()
    start = text.find("[")
    end   = text.rfind("]")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def _try_json(text: str) -> Optional[tuple[str, str]]:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    if isinstance(data, list) and len(data) >= 2:
        return _as_text(data[0]), _as_text(data[1])
    return None


def _as_text(value) -> str:
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)


def _unescape(fragment: str) -> str:
    return fragment.replace("\\n", "\n").replace('\\"', '"')
