# shadowlm/config_loader.py
import dataclasses
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from shadowlm.batch.models import RetryPolicy
from shadowlm.query.models import DomContract, QueryTimings

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = Path.home() / ".shadowlm" / "config.yaml"

# Referencia completa a variable: ${NOMBRE}. "${ticket_content}" dentro de una plantilla no cuenta
_ENV_REF_RE = re.compile(r"\$\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}")


@dataclass
class BrowserConfig:
    user_data_dir: Optional[str] = None     # None → ~/.shadowlm/browser-profile
    headless:      bool          = False
    width:         int           = 1280
    height:        int           = 1000


@dataclass
class ShadowConfig:
    notebook_id:      str
    notebook_url:     Optional[str] = None
    prompt_template:  Optional[str] = None
    target_languages: list[str]     = field(default_factory=lambda: ["en", "cn"])
    settle_seconds:   float         = 2.0
    browser:          BrowserConfig = field(default_factory=BrowserConfig)
    timings:          QueryTimings  = field(default_factory=QueryTimings)
    retry:            RetryPolicy   = field(default_factory=RetryPolicy)
    dom:              DomContract   = field(default_factory=DomContract)


def load_config(config_path: Optional[str] = None) -> ShadowConfig:
    """
    Carga la configuración desde YAML.
    Resuelve variables de entorno en los valores de texto (${VAR}).
    """
    path = Path(config_path or os.environ.get("SHADOWLM_CONFIG_PATH") or _DEFAULT_CONFIG_PATH)

    if not path.exists():
        raise FileNotFoundError(
            f"Config no encontrada en {path}. "
            f"Copia config.example.yaml a ~/.shadowlm/config.yaml"
        )

    with path.open(encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    notebook    = raw.get("notebook") or {}
    notebook_id = _resolve_env(notebook.get("id"))
    if not notebook_id:
        raise ValueError(f"notebook.id no configurado en {path}")

    return ShadowConfig(
        notebook_id      = str(notebook_id),
        notebook_url     = _resolve_env(notebook.get("url")),
        prompt_template  = _resolve_env(notebook.get("prompt_template")),
        target_languages = list(raw.get("target_languages") or ["en", "cn"]),
        settle_seconds   = float(raw.get("settle_seconds", 2.0)),
        browser          = _build(BrowserConfig, raw.get("browser"), "browser"),
        timings          = _build(QueryTimings,  raw.get("timings"), "timings"),
        retry            = _build(RetryPolicy,   raw.get("retry"),   "retry"),
        dom              = _build(DomContract,   raw.get("dom"),     "dom"),
    )


def _build(cls, section: Optional[dict], name: str):
    """Instancia la dataclass con las claves conocidas; avisa de las demás."""
    section = section or {}
    known   = {f.name for f in dataclasses.fields(cls)}
    unknown = set(section) - known
    if unknown:
        logger.warning("Claves desconocidas en '%s' ignoradas: %s", name, ", ".join(sorted(unknown)))
    return cls(**{k: _resolve_env(v) for k, v in section.items() if k in known})


def _resolve_env(value):
    """Expande ${VAR_NAME} desde el entorno (solo si es el valor completo)."""
    if not isinstance(value, str):
        return value
    match = _ENV_REF_RE.fullmatch(value.strip())
    if not match:
        return value
    return os.environ.get(match.group(1))
