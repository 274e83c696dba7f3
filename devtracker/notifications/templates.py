"""Email bodies for digests and single notifications.

Each builder returns an OutboundEmail with a plain-text part (kept for spam
score) and an HTML part with inline styles for email clients.
"""

from datetime import datetime
from html import escape

from pydantic import BaseModel

from ..integrations.email import OutboundEmail

_BRAND = "Development Tracker"


class DigestItem(BaseModel):
    type: str
    message: str
    created_at: datetime


class DigestProjectGroup(BaseModel):
    project_id: str | None
    project_name: str
    items: list[DigestItem]

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def latest(self) -> DigestItem:
        return max(self.items, key=lambda i: i.created_at)


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


def _wrap_html(title: str, inner: str, unsubscribe_url: str) -> str:
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape(title)}</title>
</head>
<body style="margin:0; padding:0; background-color:#f4f4f5; font-family:Arial,Helvetica,sans-serif;">
  <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="background-color:#f4f4f5;">
    <tr><td align="center" style="padding:24px 16px;">
      <table role="presentation" width="600" cellpadding="0" cellspacing="0"
             style="background-color:#ffffff; border-radius:8px;">
        <tr><td style="background-color:#0f766e; padding:20px 32px; border-radius:8px 8px 0 0;">
          <h1 style="margin:0; color:#ffffff; font-size:20px; font-weight:600;">{escape(title)}</h1>
        </td></tr>
        <tr><td style="padding:32px;">
{inner}
        </td></tr>
        <tr><td style="padding:16px 32px; border-top:1px solid #e5e7eb;">
          <p style="margin:0; color:#9ca3af; font-size:11px; line-height:1.5;">
            Sent by {_BRAND}.
            <a href="{escape(unsubscribe_url)}" style="color:#6b7280;">Unsubscribe from digest emails</a>
          </p>
        </td></tr>
      </table>
    </td></tr>
  </table>
</body>
</html>"""


def build_digest_email(
    *,
    to: str,
    user_name: str,
    frequency: str,
    groups: list[DigestProjectGroup],
    unsubscribe_url: str,
) -> OutboundEmail:
    """One summary email: per project the count and most recent event, then every message."""
    total = sum(g.count for g in groups)
    label = "Weekly" if frequency == "weekly" else "Daily"
    subject = f"{label} digest: {_plural(total, 'update')} across {_plural(len(groups), 'project')}"
    greeting = f"Hi {user_name}," if user_name else "Hi,"

    text_lines = [
        f"{label} digest - {_BRAND}",
        "=" * 40,
        "",
        greeting,
        f"Here is what happened on your projects ({_plural(total, 'update')}).",
        "",
    ]
    html_sections = []
    for group in groups:
        latest = group.latest
        text_lines.append(f"{group.project_name}: {_plural(group.count, 'update')}")
        text_lines.append(f"  Latest: {latest.message}")
        for item in sorted(group.items, key=lambda i: i.created_at, reverse=True):
            text_lines.append(f"  - [{item.created_at:%Y-%m-%d %H:%M}] {item.message}")
        text_lines.append("")

        rows = "".join(
            f'<li style="margin:4px 0; color:#374151; font-size:14px;">{escape(item.message)}</li>'
            for item in sorted(group.items, key=lambda i: i.created_at, reverse=True)
        )
        html_sections.append(
            f'          <h2 style="margin:24px 0 4px; color:#111827; font-size:16px;">'
            f"{escape(group.project_name)} "
            f'<span style="color:#6b7280; font-weight:normal;">({_plural(group.count, "update")})</span></h2>\n'
            f'          <p style="margin:0 0 8px; color:#0f766e; font-size:13px;">Latest: {escape(latest.message)}</p>\n'
            f'          <ul style="margin:0; padding-left:20px;">{rows}</ul>'
        )

    text_lines += ["--", _BRAND, f"Unsubscribe: {unsubscribe_url}"]
    inner = (
        f'          <p style="margin:0 0 16px; color:#374151; font-size:15px;">{escape(greeting)} '
        f"here is what happened on your projects.</p>\n" + "\n".join(html_sections)
    )
    return OutboundEmail(
        to=to,
        subject=subject,
        text="\n".join(text_lines),
        html=_wrap_html(f"{label} digest", inner, unsubscribe_url),
    )


def build_notification_email(
    *,
    to: str,
    project_name: str,
    notification_type: str,
    message: str,
    unsubscribe_url: str,
) -> OutboundEmail:
    """Immediate email for a single event."""
    headline = notification_type.replace("_", " ").capitalize()
    subject = f"[{project_name}] {headline}"
    text = f"{headline} on {project_name}\n\n{message}\n\n--\n{_BRAND}\nUnsubscribe: {unsubscribe_url}\n"
    inner = (
        f'          <p style="margin:0 0 8px; color:#6b7280; font-size:13px;">{escape(project_name)}</p>\n'
        f'          <p style="margin:0; color:#111827; font-size:15px; line-height:1.6;">{escape(message)}</p>'
    )
    return OutboundEmail(to=to, subject=subject, text=text, html=_wrap_html(headline, inner, unsubscribe_url))
