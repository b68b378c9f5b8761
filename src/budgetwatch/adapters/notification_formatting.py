"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel. ``render_budget_alert`` satisfies
the core RenderCapability; richer template engines can replace it.
"""

from __future__ import annotations

import html

from budgetwatch.core.composer import build_subject
from budgetwatch.core.models import RenderContext, RenderedMessage


def _format_text(context: RenderContext) -> str:
    """Create the plain-text body used by e-mail clients without HTML."""

    lines = [
        f"Hello, {context.greeting_name}!",
        "",
        f"{context.category_name} ({context.month_label}): {context.tier_label}",
        "",
        f"Monthly limit: {context.monthly_limit_label}",
        f"Spent this month: {context.consumption_label}",
        f"{'Available' if context.remaining >= 0 else 'Exceeded'}: {context.remaining_label}",
        "",
    ]
    lines.extend(f"- {insight}" for insight in context.insights)
    lines.extend(["", "Open the budget:", context.access_url])
    lines.append(f"(link valid until {context.token_expires_at.strftime('%Y-%m-%d %H:%M')} UTC)")
    return "\n".join(lines)


def _format_html(context: RenderContext) -> str:
    """Create the HTML body; every interpolated value is escaped."""

    def esc(value: object) -> str:
        return html.escape(str(value))

    remaining_title = "Available" if context.remaining >= 0 else "Exceeded"
    insights = "".join(f"<li>{esc(item)}</li>" for item in context.insights)
    safe_link = esc(context.access_url)
    parts = [
        f"<p>Hello, {esc(context.greeting_name)}!</p>",
        (
            f"<p><strong>{esc(context.category_name)}</strong> ({esc(context.month_label)}) "
            f"<span style=\"background:{esc(context.badge_background)};color:{esc(context.text_color)}\">"
            f"{esc(context.tier_label)}</span></p>"
        ),
        "<table>",
        f"<tr><td>Monthly limit</td><td>{esc(context.monthly_limit_label)}</td></tr>",
        f"<tr><td>Spent this month</td><td>{esc(context.consumption_label)}</td></tr>",
        f"<tr><td>{remaining_title}</td><td>{esc(context.remaining_label)}</td></tr>",
        "</table>",
        f"<ul>{insights}</ul>",
        f"<p><a href=\"{safe_link}\" target=\"_blank\" rel=\"noopener noreferrer\">Open budget</a></p>",
        f"<p style=\"color:#64748b\">Link valid until {esc(context.token_expires_at.strftime('%Y-%m-%d %H:%M'))} UTC</p>",
    ]
    return "\n".join(parts)


def render_budget_alert(context: RenderContext) -> RenderedMessage:
    """Render subject, HTML and text for one budget alert."""

    return RenderedMessage(
        subject=build_subject(context),
        html=_format_html(context),
        text=_format_text(context),
    )


def format_chat_message(subject: str, text: str, mode: str) -> str:
    """Return a chat notification (Telegram) formatted for the requested mode."""

    if mode == "markdown":
        def escape_md(value: str) -> str:
            for ch in r"*[`":
                value = value.replace(ch, f"\\{ch}")
            return value

        return f"**{escape_md(subject)}**\n\n{escape_md(text)}"
    if mode == "html":
        return f"<b>{html.escape(subject)}</b>\n\n{html.escape(text)}"
    raise ValueError(f"Unsupported notification format: {mode}")
