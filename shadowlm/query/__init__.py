from shadowlm.query.models import (
    DomContract,
    ParsedAnswer,
    QueryRequest,
    QueryState,
    QueryTimings,
    StreamEvent,
    StreamStatus,
)
from shadowlm.query.response_parser import UNPARSED_SENTINEL, parse_bilingual_answer, try_parse_pair

__all__ = [
    "DomContract",
    "ParsedAnswer",
    "QueryRequest",
    "QueryState",
    "QueryTimings",
    "StreamEvent",
    "StreamStatus",
    "UNPARSED_SENTINEL",
    "parse_bilingual_answer",
    "try_parse_pair",
]
