"""Heuristic retrieval selector.

Decides, from the prompt text alone, whether a request should be pinned to
the conversation's knowledge base (restricted retrieval) and whether general
web search should be offered. Patterns cover English and Spanish phrasing and
are matched against a lower-cased, accent-stripped copy of the prompt.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Iterable, Literal, Sequence

__all__ = [
    "WebSearchDecision",
    "RetrievalDecision",
    "decide",
    "normalize_text",
    "file_name_tokens",
    "is_document_query",
    "decide_web_search",
]

ContextSize = Literal["low", "medium", "high"]

_LONG_PROMPT_CHARS = 220


@dataclass(slots=True, frozen=True)
class WebSearchDecision:
    enabled: bool = False
    context_size: ContextSize = "low"


@dataclass(slots=True, frozen=True)
class RetrievalDecision:
    force_restricted_retrieval: bool = False
    web_search: WebSearchDecision = field(default_factory=WebSearchDecision)


def _compile(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(pattern) for pattern in patterns)


_DOCUMENT_QUERY_PATTERNS = _compile(
    (
        # possessive / personal phrasing
        r"\b(my|mi|mis|yo|me)\b",
        r"\btu\s+(titulacion|titulo|certificado|constancia|documento)",
        # explicit document nouns
        r"\b(the\s+)?(pdf|document|file|attachment|uploaded)",
        r"\b(el\s+)?(pdf|documento|archivo|adjunto|subido)",
        # analysis verbs
        r"\b(summarize|summary|resume|resumen|resumir)",
        r"\b(what\s+does\s+it\s+say|what\s+is\s+in|read\s+the|analyze)",
        r"\b(que\s+dice|que\s+contiene|lee\s+el|analiza|revisar)",
        r"\b(extract|content|contents|information\s+from)",
        r"\b(extrae|contenido|informacion\s+del)",
        # document-domain nouns
        r"\b(titulacion|titulo|grado|licenciatura|maestria|doctorado)",
        r"\b(certificado|constancia|diploma|credencial)",
        r"\b(fecha\s+de|cuando\s+fue|en\s+que\s+fecha)",
        r"\b(universidad|institucion|escuela|facultad)",
        r"\b(nombre|direccion|telefono|email|correo)",
        r"\b(nacimiento|nacido|naci|edad)",
        r"\b(trabajo|empleo|experiencia|laboral)",
        r"\b(educacion|estudios|formacion|academico)",
        r"\bcuando\b.*\b(fue|era|obtuve|recibi)",
        r"\bque\s+(fecha|dia|ano|mes)",
        r"\b(dice|menciona|indica|especifica)\s+(el|la|mi)",
    )
)
_EXPLICIT_INTERNET = re.compile(r"\b(internet|web|online|google|busca en la web|search online)\b")

_URL = re.compile(r"(https?://|www\.)")
_WEB_INTENT = _compile(
    (
        r"\b(internet|web|online|google|buscar\s+en\s+la\s+web|busca\s+en\s+la\s+web|search\s+the\s+web)\b",
        r"\b(source|sources|fuente|fuentes|cita|citation)\b",
        r"\bsite:",
    )
)
_RECENCY = _compile(
    (
        r"\b(hoy|ayer|esta\s+semana|este\s+mes|este\s+ano|actual|actualidad|reciente|ultimas|ultimos|latest|news|noticias)\b",
        r"\b(today|yesterday|this\s+week|this\s+month|this\s+year|current|recent|recently)\b",
        r"\b(precio|precios|price|prices|cotizacion|stock|stocks|acciones|tipo\s+de\s+cambio|exchange\s+rate|usd|dolar|eur|crypto|bitcoin)\b",
        r"\b(clima|weather|pronostico|forecast)\b",
        r"\b(resultados|score|scores|marcador|partido|eleccion|elecciones|election|elections)\b",
    )
)
_RESEARCH = re.compile(
    r"\b(investiga|investigar|investigate|research|comparar|compare|benchmark|analiza\s+fuentes|recopila)\b"
)
_FILE_EXTENSION = re.compile(r"\.(pdf|doc|docx|txt|md)$")
_SEPARATORS = re.compile(r"[-_\s]+")


def normalize_text(text: str) -> str:
    """Lower-case ``text`` and strip combining diacritics."""

    decomposed = unicodedata.normalize("NFD", (text or "").lower())
    return "".join(char for char in decomposed if unicodedata.category(char) != "Mn")


def file_name_tokens(file_names: Sequence[str]) -> list[str]:
    """Keyword tokens derived from uploaded file names (length > 2)."""

    tokens: list[str] = []
    for name in file_names:
        stem = _FILE_EXTENSION.sub("", (name or "").lower())
        for word in _SEPARATORS.split(normalize_text(stem)):
            if len(word) > 2 and word not in tokens:
                tokens.append(word)
    return tokens


def is_document_query(prompt: str, file_names: Sequence[str] = ()) -> bool:
    normalized = normalize_text(prompt)
    if any(pattern.search(normalized) for pattern in _DOCUMENT_QUERY_PATTERNS):
        return True
    return any(token in normalized for token in file_name_tokens(file_names))


def decide_web_search(prompt: str) -> WebSearchDecision:
    normalized = normalize_text(prompt)
    research = bool(_RESEARCH.search(normalized))
    enabled = (
        bool(_URL.search(normalized))
        or any(pattern.search(normalized) for pattern in _WEB_INTENT)
        or any(pattern.search(normalized) for pattern in _RECENCY)
        or research
    )
    if not enabled:
        return WebSearchDecision(False, "low")
    size: ContextSize = "medium" if research or len(prompt) > _LONG_PROMPT_CHARS else "low"
    return WebSearchDecision(True, size)


def decide(prompt: str, uploaded_file_names: Sequence[str], has_knowledge_base: bool) -> RetrievalDecision:
    """Compute the retrieval decision for one request.

    With a knowledge base, document-style questions (or any question while
    files are uploaded, unless the user explicitly asks for the internet) force
    restricted retrieval and switch web search off. Otherwise web search is
    decided on URL, web-intent, recency and research cues.
    """

    if has_knowledge_base:
        explicit_internet = bool(_EXPLICIT_INTERNET.search(normalize_text(prompt)))
        if is_document_query(prompt, uploaded_file_names) or (uploaded_file_names and not explicit_internet):
            return RetrievalDecision(True, WebSearchDecision(False, "low"))
    return RetrievalDecision(False, decide_web_search(prompt))
