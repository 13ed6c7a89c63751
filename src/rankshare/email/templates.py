"""
Email templates for Rankshare.

Inline CSS only. Each template function returns (subject, html_body, text_body).
"""

from __future__ import annotations

from html import escape

BG_PAGE = "#F3F4F6"
BG_CARD = "#FFFFFF"
ACCENT = "#2563EB"
TEXT_PRIMARY = "#111827"
TEXT_SECONDARY = "#4B5563"
BORDER = "#E5E7EB"


def _base_layout(content: str, app_name: str = "Rankshare") -> str:
    """Wrap content in the base email layout."""
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{app_name}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%">
        <tr>
            <td align="center" style="padding: 40px 20px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="560" style="max-width: 560px; width: 100%;">
                    <tr>
                        <td align="center" style="padding-bottom: 24px; font-size: 22px; font-weight: 700; color: {TEXT_PRIMARY};">{app_name}</td>
                    </tr>
                    <tr>
                        <td style="background-color: {BG_CARD}; border: 1px solid {BORDER}; border-radius: 10px; padding: 32px;">
                            {content}
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="padding-top: 24px; color: {TEXT_SECONDARY}; font-size: 12px;">
                            If you didn't expect this email, you can safely ignore it.
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _button(url: str, label: str) -> str:
    """Render a CTA button."""
    return f"""\
<table role="presentation" cellspacing="0" cellpadding="0" border="0" style="margin: 24px auto;">
    <tr>
        <td align="center" style="background-color: {ACCENT}; border-radius: 6px;">
            <a href="{url}" target="_blank" style="display: inline-block; padding: 12px 28px; color: #FFFFFF; font-size: 15px; font-weight: 600; text-decoration: none;">
                {label}
            </a>
        </td>
    </tr>
</table>"""


def login_link(link_url: str, expires_minutes: int = 15) -> tuple[str, str, str]:
    """
    One-time sign-in link.

    Returns:
        (subject, html_body, text_body)
    """
    subject = "Your Rankshare sign-in link"
    safe_url = escape(link_url, quote=True)
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 22px; margin: 0 0 16px 0;">Sign in to Rankshare</h1>
<p style="color: {TEXT_SECONDARY}; font-size: 15px; line-height: 1.6; margin: 0;">
    Click the button below to sign in. The link works once.
</p>
{_button(safe_url, "Sign in")}
<p style="color: {TEXT_SECONDARY}; font-size: 13px; line-height: 1.5; margin: 0;">
    This link expires in <strong>{expires_minutes} minutes</strong>.
</p>
<hr style="border: none; border-top: 1px solid {BORDER}; margin: 24px 0;">
<p style="color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5; margin: 0;">
    If the button doesn't work, copy and paste this URL:<br>
    <a href="{safe_url}" style="color: {ACCENT}; word-break: break-all;">{safe_url}</a>
</p>"""
    text_body = (
        f"Sign in to Rankshare\n\n"
        f"Open this link to sign in (it works once):\n\n{link_url}\n\n"
        f"This link expires in {expires_minutes} minutes.\n\n"
        f"If you didn't request this, please ignore this email."
    )
    return subject, _base_layout(content), text_body


def password_changed(display_name: str | None) -> tuple[str, str, str]:
    """
    Password changed notification.

    Returns:
        (subject, html_body, text_body)
    """
    name = escape(display_name or "there")
    subject = "Your password has been changed"
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 22px; margin: 0 0 16px 0;">Password changed</h1>
<p style="color: {TEXT_SECONDARY}; font-size: 15px; line-height: 1.6; margin: 0 0 8px 0;">Hi {name},</p>
<p style="color: {TEXT_SECONDARY}; font-size: 15px; line-height: 1.6; margin: 0;">
    The password for your Rankshare account was changed. If this wasn't you,
    sign in with an email link and set a new password right away.
</p>"""
    text_body = (
        f"Hi {display_name or 'there'},\n\n"
        f"The password for your Rankshare account was changed.\n\n"
        f"If this wasn't you, sign in with an email link and set a new password right away."
    )
    return subject, _base_layout(content), text_body
