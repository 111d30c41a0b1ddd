# batch/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class JobState(Enum):
    PENDING   = "pending"
    RUNNING   = "running"
    SKIPPED   = "skipped"
    SUCCEEDED = "succeeded"
    FAILED    = "failed"


@dataclass
class Conversation:
    id:        int
    body_text: str
    incoming:  bool = False


@dataclass
class WorkItem:
    """
    Ticket de soporte sobre el que se lanzan las consultas.
    available_langs: idiomas para los que ya existe una variante.
    """
    id:              int
    subject:         str
    description:     str                = ""
    conversations:   list[Conversation] = field(default_factory=list)
    available_langs: list[str]          = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "WorkItem":
        """Acepta tanto bodyText (payload del backend) como body_text."""
        conversations = [
            Conversation(
                id        = conv.get("id", index),
                body_text = conv.get("bodyText", conv.get("body_text", "")) or "",
                incoming  = bool(conv.get("incoming", False)),
            )
            for index, conv in enumerate(data.get("conversations") or [])
        ]
        return cls(
            id              = data.get("ticketId", data.get("id")),
            subject         = data.get("subject") or "",
            description     = data.get("description") or "",
            conversations   = conversations,
            available_langs = list(data.get("available_langs") or []),
        )


@dataclass
class BatchJob:
    """
    Estado de un ítem dentro del batch. Solo lo muta el ejecutor.
    units: estado por idioma (unidad de trabajo = ítem × idioma).
    """
    item_id:                int
    target_languages:       list[str]
    current_language_index: int = 0
    retry_count:            int = 0
    state:                  JobState = JobState.PENDING
    units:                  dict[str, JobState] = field(default_factory=dict)

    def __post_init__(self):
        for lang in self.target_languages:
            self.units.setdefault(lang, JobState.PENDING)

    @property
    def current_language(self) -> Optional[str]:
        if self.current_language_index < len(self.target_languages):
            return self.target_languages[self.current_language_index]
        return None

    def resolve(self) -> JobState:
        """Estado agregado del ítem a partir de sus unidades."""
        states = set(self.units.values())
        if JobState.FAILED in states:
            self.state = JobState.FAILED
        elif states & {JobState.PENDING, JobState.RUNNING}:
            # Batch detenido antes de terminar el ítem
            self.state = JobState.PENDING
        elif states == {JobState.SKIPPED}:
            self.state = JobState.SKIPPED
        else:
            self.state = JobState.SUCCEEDED
        return self.state


@dataclass
class BatchProgress:
    current: int
    total:   int

    @property
    def done(self) -> bool:
        return self.current >= self.total


@dataclass(frozen=True)
class UnitResult:
    """Resultado entregado al sink por cada unidad completada."""
    item_id:        int
    language:       str
    target_text:    str
    reference_text: str
    parsed:         bool
    raw_text:       str


@dataclass
class BatchOutcome:
    jobs:     list[BatchJob]
    progress: BatchProgress
    aborted:  bool = False
    error:    Optional[Any] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for j in self.jobs for s in j.units.values() if s is JobState.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return sum(1 for j in self.jobs for s in j.units.values() if s is JobState.SKIPPED)


@dataclass
class RetryPolicy:
    max_attempts:        int   = 5
    retry_delay_seconds: float = 1.0
