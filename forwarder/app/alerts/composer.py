"""
composer.py — Render a Grafana webhook into the relayed message text.

═══════════════════════════════════════════════════════════════════════════
MESSAGE LAYOUT
═══════════════════════════════════════════════════════════════════════════

    *{icon} {title}*                 header (bold)
                                     blank
    Failed to attach image: {err}    only when the image fetch failed
                                     blank (with the notice)
    {message}                        Grafana rule message
                                     blank
    *{metric}*: _{value:.2f}_        one line per evaluation match
    {ruleUrl}                        link back to the rule, if any

Example (state "ok", no matches, no link):

    "*☘ disk space*\\n\\nRecovered\\n\\n"

State icons:

    State        Icon   Redundant title prefix stripped
    ─────────    ────   ───────────────────────────────
    alerting     🔥     "[Alerting] "
    ok           ☘      "[OK] "
    (other)      state verbatim, title untouched
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from forwarder.app.api.schemas import EvalMatch, WebhookAlert

STATE_ICONS: Dict[str, str] = {
    "alerting": "🔥",
    "ok": "☘",
}

# Grafana repeats the state in the title, e.g. "[Alerting] CPU high"
STATE_TITLE_PREFIXES: Dict[str, str] = {
    "alerting": "[Alerting] ",
    "ok": "[OK] ",
}


def state_icon(state: str) -> str:
    """Icon for a recognized state, or the state string itself."""
    return STATE_ICONS.get(state, state)


def strip_state_prefix(title: str, state: str) -> str:
    """Remove the bracketed state prefix once, if the title starts with it."""
    prefix = STATE_TITLE_PREFIXES.get(state)
    if prefix and title.startswith(prefix):
        return title[len(prefix):]
    return title


def format_match(match: EvalMatch) -> str:
    return f"*{match.metric}*: _{match.value:.2f}_\n"


def format_matches(matches: Iterable[EvalMatch]) -> str:
    return "".join(format_match(m) for m in matches)


def compose_message(alert: WebhookAlert, *, image_error: Optional[str] = None) -> str:
    """
    Build the final message text for a webhook alert.

    Parameters
    ----------
    alert : WebhookAlert
        Decoded webhook body.
    image_error : str | None
        Reason the attachment could not be fetched; adds a notice line.

    Returns
    -------
    str
    """
    title = strip_state_prefix(alert.title, alert.state)

    parts: List[str] = [f"*{state_icon(alert.state)} {title}*\n\n"]
    if image_error is not None:
        parts.append(f"Failed to attach image: {image_error}\n\n")
    parts.append(f"{alert.message}\n\n")
    parts.append(format_matches(alert.eval_matches))
    parts.append(alert.rule_url)

    return "".join(parts)
