# query/models.py
from dataclasses import dataclass, field
from enum import Enum

from shadowlm.surface.models import SurfaceHandle


class StreamStatus(Enum):
    STREAMING = "streaming"
    COMPLETE  = "complete"
    ERROR     = "error"


class QueryState(Enum):
    INIT             = "init"
    CLEARING_HISTORY = "clearing_history"
    SUBMITTING       = "submitting"
    POLLING          = "polling"
    COMPLETE         = "complete"
    ERROR            = "error"


@dataclass(frozen=True)
class QueryRequest:
    prompt: str
    handle: SurfaceHandle


@dataclass(frozen=True)
class StreamEvent:
    text:   str
    status: StreamStatus

    @property
    def is_final(self) -> bool:
        return self.status is not StreamStatus.STREAMING


@dataclass(frozen=True)
class ParsedAnswer:
    """
    Par bilingüe extraído de la respuesta final.
    Siempre presente: si el parseo falla, target_text es el texto crudo,
    reference_text el centinela y parsed=False.
    """
    target_text:    str
    reference_text: str
    parsed:         bool = True


@dataclass
class QueryTimings:
    """Tiempos del protocolo. Los defaults reproducen el comportamiento en producción."""
    poll_interval_seconds: float = 0.5
    max_poll_cycles:       int   = 360     # ~180s de timeout duro
    soft_idle_cycles:      int   = 10      # ~5s tras una respuesta válida
    clear_history_cycles:  int   = 3
    clear_settle_seconds:  float = 1.5
    result_timeout_seconds: float = 1.5
    input_settle_ms:       int   = 500
    menu_wait_ms:          int   = 800


@dataclass
class DomContract:
    """
    Contrato frágil con el DOM de la página remota.
    Se puede sobreescribir desde el config si la página cambia.
    """
    input_selectors: list[str] = field(default_factory=lambda: [
        "textarea.query-box-input",
        'textarea[aria-label*="查询框"]',
        'textarea[aria-label*="Chat box"]',
        'textarea[aria-label*="Ask"]',
    ])
    submit_selectors: list[str] = field(default_factory=lambda: [
        "button.submit-button",
        'button[aria-label="提交"]:not(.actions-enter-button)',
        'button[aria-label="Send"]:not(.actions-enter-button)',
    ])
    answer_selector: str = ".to-user-container .message-text-content"
    options_selectors: list[str] = field(default_factory=lambda: [
        'button[aria-label="对话选项"]',
        'button[aria-label="Conversation options"]',
    ])
    menu_item_selector: str = '.mat-mdc-menu-content button, [role="menuitem"]'
    delete_labels: list[str] = field(default_factory=lambda: [
        "删除对话记录",
        "Delete conversation",
        "Delete chat",
        "Eliminar conversación",
    ])
    confirm_selector: str = (
        '.mat-mdc-dialog-actions button, mat-dialog-actions button, [role="dialog"] button'
    )
    confirm_labels: list[str] = field(default_factory=lambda: [
        "删除", "Delete", "Confirm", "Eliminar",
    ])
