# query/scripts.py
"""
Fragmentos JS que se inyectan en la página remota.

Cada script:
- empieza con una cabecera `/* shadowlm:<tipo> rid=<id> */`
- se envuelve en `void (...)()` para que la inyección no espere al cuerpo
- reporta por eventos: `result` con JSON (incluye el rid) y `log` con texto plano
"""
import json

from shadowlm.query.models import DomContract, QueryTimings
from shadowlm.surface.base import EMIT_BINDING

CLEAR_HISTORY = "clear_history"
SUBMIT        = "submit"
SNAPSHOT      = "snapshot"

_PRELUDE = """\
  const rid = {rid};
  const emit = (event, payload) => window[{binding}](event, payload);
  const report = (payload) => emit("result", JSON.stringify(Object.assign({{ rid: rid }}, payload)));
  const log = (message) => emit("log", String(message));
  const sleep = (ms) => new Promise((r) => setTimeout(r, ms));
  const first = (selectors) => selectors.map((s) => document.querySelector(s)).find(Boolean) || null;
"""


def _header(kind: str, rid: str) -> str:
    return f"/* shadowlm:{kind} rid={rid} */\n"


def _prelude(rid: str) -> str:
    return _PRELUDE.format(rid=json.dumps(rid), binding=json.dumps(EMIT_BINDING))


def build_clear_history_script(rid: str, dom: DomContract, timings: QueryTimings) -> str:
    """
    Un ciclo de limpieza: si no hay bloques de respuesta el historial ya
    está vacío; si no, abre "más opciones", busca la entrada de borrado por
    texto (cualquier locale) y confirma.
    Resultado: {"state": "empty" | "cleared" | "failed", "reason"?: str}
    """
    return (
        _header(CLEAR_HISTORY, rid)
        + "void (async function () {\n"
        + _prelude(rid)
        + f"""\
  try {{
    if (document.querySelectorAll({json.dumps(dom.answer_selector)}).length === 0) {{
      report({{ state: "empty" }});
      return;
    }}
    const options = first({json.dumps(dom.options_selectors)});
    if (!options) {{
      report({{ state: "failed", reason: "no_options_button" }});
      return;
    }}
    options.click();
    await sleep({timings.menu_wait_ms});

    const labels = {json.dumps(dom.delete_labels, ensure_ascii=False)};
    const items = Array.from(document.querySelectorAll({json.dumps(dom.menu_item_selector)}));
    const entry = items.find((el) => labels.some((l) => (el.textContent || "").includes(l)));
    if (!entry) {{
      document.body.dispatchEvent(new KeyboardEvent("keydown", {{ key: "Escape", bubbles: true }}));
      report({{ state: "failed", reason: "no_delete_entry" }});
      return;
    }}
    entry.click();
    await sleep({timings.menu_wait_ms});

    const confirmLabels = {json.dumps(dom.confirm_labels, ensure_ascii=False)};
    const buttons = Array.from(document.querySelectorAll({json.dumps(dom.confirm_selector)}));
    const confirm = buttons.find((el) => confirmLabels.some((l) => (el.textContent || "").trim().includes(l)));
    if (confirm) {{
      confirm.click();
    }} else {{
      log("clear_history: sin diálogo de confirmación");
    }}
    report({{ state: "cleared", confirmed: !!confirm }});
  }} catch (e) {{
    report({{ state: "failed", reason: String(e) }});
  }}
}})();
"""
    )


def build_submit_script(
    rid:     str,
    prompt:  str,
    dom:     DomContract,
    timings: QueryTimings,
) -> str:
    """
    Escribe el prompt, dispara los eventos de cambio que escucha la página,
    espera a que la UI se asiente y pulsa enviar.
    Resultado: {"ok": true} | {"ok": false, "error": "no_input" | "no_submit" | str}
    """
    return (
        _header(SUBMIT, rid)
        + "void (async function () {\n"
        + _prelude(rid)
        + f"""\
  try {{
    const input = first({json.dumps(dom.input_selectors, ensure_ascii=False)});
    if (!input) {{
      report({{ ok: false, error: "no_input" }});
      return;
    }}
    input.focus();
    // Setter nativo: el framework de la página ignora asignaciones directas a .value
    const setter = Object.getOwnPropertyDescriptor(window.HTMLTextAreaElement.prototype, "value").set;
    setter.call(input, {json.dumps(prompt, ensure_ascii=False)});
    input.dispatchEvent(new Event("input", {{ bubbles: true }}));
    input.dispatchEvent(new Event("change", {{ bubbles: true }}));
    await sleep({timings.input_settle_ms});

    const submit = first({json.dumps(dom.submit_selectors, ensure_ascii=False)});
    if (!submit) {{
      report({{ ok: false, error: "no_submit" }});
      return;
    }}
    submit.disabled = false;
    submit.click();
    window.__shadowlm_active__ = true;
    report({{ ok: true }});
  }} catch (e) {{
    report({{ ok: false, error: String(e) }});
  }}
}})();
"""
    )


def build_snapshot_script(rid: str, dom: DomContract) -> str:
    """
    Captura el texto del último bloque de respuesta y si el input volvió a
    estar habilitado (proxy de "la página no está generando").
    Resultado: {"text": str, "idle": bool}
    """
    return (
        _header(SNAPSHOT, rid)
        + "void (async function () {\n"
        + _prelude(rid)
        + f"""\
  try {{
    const blocks = document.querySelectorAll({json.dumps(dom.answer_selector)});
    const last = blocks[blocks.length - 1];
    const text = last ? (last.innerText || last.textContent || "").trim() : "";
    const input = first({json.dumps(dom.input_selectors, ensure_ascii=False)});
    report({{ text: text, idle: !!input && !input.disabled }});
  }} catch (e) {{
    log("snapshot: " + String(e));
  }}
}})();
"""
    )
