"""Welcome message text shared by the enqueuer and the worker."""
from __future__ import annotations

DEFAULT_DISPLAY_NAME = "Irmão(ã)"


def display_name(name: str, fallback: str = DEFAULT_DISPLAY_NAME) -> str:
    return (name or "").strip() or fallback


def render_welcome_text(name: str, group_link: str = "") -> str:
    """Fallback body for text mode; the group sentence is dropped when there is no link."""
    text = f"Olá {name}! Seja bem-vindo(a) ao CCM."
    group_link = (group_link or "").strip()
    if group_link:
        text = f"{text} Entre no grupo: {group_link}"
    return text
