"""Translate between the legacy ``bot`` wire names and the ``agent`` names used internally."""

import copy
from typing import Any


def _rename_key(container: Any, old: str, new: str) -> None:
    if isinstance(container, dict) and container.get(old):
        container[new] = container.pop(old)


def normalize_incoming_activity(payload: dict[str, Any]) -> dict[str, Any]:
    """Rename ``relatesTo.bot`` to ``relatesTo.agent`` on a received payload."""
    normalized = copy.deepcopy(payload)
    _rename_key(normalized.get("relatesTo"), "bot", "agent")
    return normalized


def normalize_outgoing_activity(payload: dict[str, Any] | None) -> dict[str, Any] | None:
    """Return a deep copy with ``relatesTo.agent`` renamed to ``relatesTo.bot``.

    Payloads without ``relatesTo`` are copied unchanged.
    """
    if not payload:
        return payload
    normalized = copy.deepcopy(payload)
    _rename_key(normalized.get("relatesTo"), "agent", "bot")
    return normalized


def normalize_token_exchange_state(payload: dict[str, Any]) -> dict[str, Any]:
    """Rename ``conversation.agent`` to ``conversation.bot`` in a token exchange state."""
    normalized = copy.deepcopy(payload)
    _rename_key(normalized.get("conversation"), "agent", "bot")
    return normalized
