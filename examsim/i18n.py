"""Lightweight internationalisation helpers for learner-facing notices."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable

DEFAULT_LANGUAGE = "ENGLISH"

SUPPORTED_LANGUAGES: dict[str, dict[str, str]] = {
    "ENGLISH": {"label": "English", "icon": "🇬🇧", "locale": "en"},
    "PORTUGUESE": {"label": "Português", "icon": "🇧🇷", "locale": "pt-BR"},
}


TRANSLATIONS: dict[str, dict[str, str]] = {
    "PORTUGUESE": {
        "Authentication required.": "Autenticação necessária.",
        "Progress restored": "Progresso restaurado",
        "Your previous progress was loaded automatically.": "Seu progresso anterior foi carregado automaticamente.",
        "Error saving answer": "Erro ao salvar resposta",
        "Your answer was saved locally but has not been synced with the server.": "Sua resposta foi salva localmente, mas não foi sincronizada com o servidor.",
        "Error finishing exam": "Erro ao finalizar prova",
        "An error occurred while finishing the exam. Please try again.": "Ocorreu um erro ao finalizar a prova. Tente novamente.",
        "Go to the last question before finishing the exam.": "Vá até a última questão antes de finalizar a prova.",
        "Question index is out of range.": "Índice de questão fora do intervalo.",
        "Option {option} is not available for this question.": "A alternativa {option} não existe para esta questão.",
        "The exam is being submitted.": "A prova está sendo enviada.",
        "This exam has already been submitted.": "Esta prova já foi finalizada.",
        "Confirm the submission before finishing the exam.": "Confirme o envio antes de finalizar a prova.",
        "No questions are available for ENEM {year}.": "Não foram encontradas questões para o ENEM {year}.",
        "Could not load the questions for ENEM {year}.": "Não foi possível carregar as questões para o ENEM {year}.",
        "Exam attempt not found.": "Tentativa de prova não encontrada.",
        "Invalid email or password.": "Email ou senha inválidos.",
        "Logged out": "Sessão encerrada",
        "Profile updated": "Perfil atualizado",
    },
}


_ALIASES: dict[str, str] = {
    "EN": "ENGLISH",
    "ENGLISH": "ENGLISH",
    "PT": "PORTUGUESE",
    "PT-BR": "PORTUGUESE",
    "PT_BR": "PORTUGUESE",
    "PORTUGUESE": "PORTUGUESE",
    "PORTUGUÊS": "PORTUGUESE",
}


def normalise_language_code(language: str | None) -> str | None:
    """Return the canonical language code or ``None`` when unsupported."""

    if not language:
        return None
    return _ALIASES.get(language.strip().upper())


def ensure_language_code(language: str | None) -> str:
    return normalise_language_code(language) or DEFAULT_LANGUAGE


def translate_text(text: str, language: str | None = None, **format_values: object) -> str:
    """Translate ``text`` into ``language`` and apply ``str.format`` values."""

    catalogue = TRANSLATIONS.get(ensure_language_code(language), {})
    translated = catalogue.get(text, text)
    if format_values:
        try:
            return translated.format(**format_values)
        except (KeyError, IndexError):
            return translated
    return translated


@lru_cache(maxsize=None)
def get_language_choices() -> list[dict[str, str]]:
    return [
        {"code": code, **meta}
        for code, meta in SUPPORTED_LANGUAGES.items()
    ]


__all__: Iterable[str] = [
    "DEFAULT_LANGUAGE",
    "SUPPORTED_LANGUAGES",
    "TRANSLATIONS",
    "ensure_language_code",
    "get_language_choices",
    "normalise_language_code",
    "translate_text",
]
