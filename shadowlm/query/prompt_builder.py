# query/prompt_builder.py
from typing import Optional

from shadowlm.batch.models import WorkItem

# Marcador del contenido del ticket en las plantillas de prompt.
# "${工单内容}" se mantiene por compatibilidad con plantillas existentes.
TICKET_PLACEHOLDERS = ("${ticket_content}", "${工单内容}")

DEFAULT_REPLY_TEMPLATE = "请根据以下工单内容回答我的问题:\n\n${ticket_content}"

_LANG_NAMES = {
    "cn":    "Simplified Chinese",
    "zh-cn": "Simplified Chinese",
    "en":    "English",
    "jp":    "Japanese",
}

_TRANSLATE_PROMPT = """\
You are a professional customer support translator.
Translate the following support ticket into {target_name}.

CRITICAL INSTRUCTIONS:
1. Respond ONLY with a JSON array of exactly two strings.
2. Element 0: the full ticket (subject, description and every message) in {target_name}.
3. Element 1: the same content in {reference_name}, for the support team.
4. Do NOT include any intro, outro, explanation or markdown blocks (like ```json).
5. Escape line breaks inside the strings as \\n.

Format: ["<{target_name} text>", "<{reference_name} text>"]

--- TICKET TO TRANSLATE ---
{context}"""


def language_name(code: str) -> str:
    """Nombre legible del idioma (sin distinguir mayúsculas); si no se conoce, el propio código."""
    return _LANG_NAMES.get(code.lower(), code)


def build_ticket_context(item: WorkItem, up_to_conversation: Optional[int] = None) -> str:
    """
    Contexto plano del ticket: asunto, descripción e historial.
    Con up_to_conversation el historial se corta en esa conversación (incluida).
    """
    context = (
        f"Subject: {item.subject}\n\n"
        f"Description: {item.description or 'No description'}\n\n"
    )
    if item.conversations:
        context += "Conversations history:\n"
        for conv in item.conversations:
            speaker = "Customer" if conv.incoming else "Agent"
            context += f"{speaker}: {conv.body_text}\n"
            if up_to_conversation is not None and conv.id == up_to_conversation:
                break
    return context


def render_prompt_template(template: Optional[str], context: str) -> str:
    """
    Sustituye el marcador por el contexto del ticket.
    Sin plantilla se usa la de respuesta por defecto; si la plantilla no
    trae marcador, el contexto se añade al final.
    """
    template = template or DEFAULT_REPLY_TEMPLATE
    for placeholder in TICKET_PLACEHOLDERS:
        if placeholder in template:
            return template.replace(placeholder, context)
    return f"{template.rstrip()}\n\n{context}"


def build_translation_prompt(
    item:           WorkItem,
    target_lang:    str,
    reference_lang: str = "cn",
) -> str:
    return _TRANSLATE_PROMPT.format(
        target_name    = language_name(target_lang),
        reference_name = language_name(reference_lang),
        context        = build_ticket_context(item),
    )
