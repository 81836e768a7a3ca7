"""
Mail content for the built-in mail channel.

Builds subject, HTML body, text alternative and thread headers for one
event group. Every recipient of a chunk gets the same message (Bcc), so
nothing here is personalised.
"""

import html
import os
from typing import Any, Dict

import html2text

from models.content import Content
from models.types import ContentID, TenantID

# Frontend base URL for the preferences link in emails
FRONTEND_BASE_URL = os.getenv('FRONTEND_BASE_URL', 'https://scoped-notify.local')


def message_id(tenant_id: TenantID, content_id: ContentID, domain: str, kind: str = 'post') -> str:
    """Stable Message-ID of an item, so replies can thread under it."""
    return f"<{kind}-{tenant_id}-{content_id}@{domain}>"


def thread_headers(content: Content, domain: str) -> Dict[str, str]:
    """
    Headers that thread a comment's mail under its root item's mail.

    A post mail carries the root Message-ID itself; comment mails reference it.
    """
    root = message_id(content.tenant_id, content.root_id, domain)
    if content.object_type != 'comment':
        return {'Message-ID': root}
    return {
        'Message-ID': message_id(content.tenant_id, content.id, domain, kind='comment'),
        'In-Reply-To': root,
        'References': root,
    }


def _prepare_mail_data(content: Content) -> Dict[str, Any]:
    """Extract and escape everything the formatters display."""
    if content.object_type == 'comment':
        post_title = content.parent_title or 'a post'
    else:
        post_title = content.title or 'Untitled'

    paragraphs = [p.strip() for p in (content.text or '').split('\n\n') if p.strip()]

    return {
        'tenant_name': content.tenant_name or f"Site {content.tenant_id}",
        'post_title': post_title,
        'author_name': content.author_name or 'Someone',
        'body_html': ''.join(f"<p>{html.escape(p)}</p>" for p in paragraphs),
        'url': content.url,
        'link_text': 'View Comment' if content.object_type == 'comment' else 'View Post',
    }


def format_mail_subject(content: Content, reason: str) -> str:
    data = _prepare_mail_data(content)
    site = data['tenant_name']
    title = data['post_title']

    if content.object_type == 'post':
        if reason.startswith('new_'):
            return f"[{site}] New Post Published: {title}"
        if reason == 'mention':
            return f"[{site}] You were mentioned in: {title}"
        return f"[{site}] Notification regarding Post: {title}"

    if content.object_type == 'comment':
        if reason == 'new_comment':
            return f"[{site}] New Comment on: {title}"
        if reason == 'mention':
            return f"[{site}] You were mentioned in a comment on: {title}"
        return f"[{site}] Notification regarding Comment on: {title}"

    return f"[{site}] New Notification ({reason})"


def _build_intro_html(content: Content, reason: str, data: Dict[str, Any]) -> str:
    title = html.escape(data['post_title'])
    site = html.escape(data['tenant_name'])
    author = html.escape(data['author_name'])

    if content.object_type == 'post':
        if reason.startswith('new_'):
            return f'<p>A new post, "{title}", has been published on {site}.</p>'
        if reason == 'mention':
            return (f'<p>You were mentioned by {author} in the post "{title}":</p>'
                    f'<blockquote>{data["body_html"]}</blockquote>')
        return f'<p>There is a notification regarding the post "{title}" on {site}.</p>'

    if reason == 'new_comment':
        return (f'<p>{author} left a new comment on the post "{title}":</p>'
                f'<blockquote>{data["body_html"]}</blockquote>')
    if reason == 'mention':
        return (f'<p>You were mentioned by {author} in a comment on the post "{title}":</p>'
                f'<blockquote>{data["body_html"]}</blockquote>')
    return f'<p>There is a notification regarding a comment by {author} on the post "{title}".</p>'


def format_mail_html(content: Content, reason: str, preferences_url: str | None = None) -> str:
    """
    Build the HTML body.

    Args:
        content: Post or comment the mail is about
        reason: Queue row reason ('new_post', 'new_comment', 'mention', ...)
        preferences_url: Link for managing notifications

    Returns:
        HTML string
    """
    if preferences_url is None:
        preferences_url = f"{FRONTEND_BASE_URL}/preferences"

    data = _prepare_mail_data(content)
    intro = _build_intro_html(content, reason, data)

    link = ''
    if data['url']:
        link = f'<p><a href="{html.escape(data["url"], quote=True)}" class="read-more">{data["link_text"]} →</a></p>'

    return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif;
            line-height: 1.6;
            color: #333;
            max-width: 600px;
            margin: 0 auto;
            padding: 20px;
        }}
        blockquote {{
            border-left: 4px solid #e5e7eb;
            margin: 10px 0;
            padding: 5px 15px;
            background-color: #f9fafb;
        }}
        .read-more {{
            color: #2563eb;
            text-decoration: none;
            font-weight: 500;
        }}
        .footer {{
            margin-top: 30px;
            padding-top: 20px;
            border-top: 1px solid #e5e7eb;
            font-size: 13px;
            color: #6b7280;
        }}
    </style>
</head>
<body>
    <p>Hello,</p>
    {intro}
    {link}
    <div class="footer">
        <p>This email was sent from {html.escape(data['tenant_name'])}.</p>
        <p><a href="{html.escape(preferences_url, quote=True)}">Manage your notification preferences</a></p>
    </div>
</body>
</html>
"""


def format_mail_text(html_body: str) -> str:
    """Plain text alternative of an HTML body."""
    converter = html2text.HTML2Text()
    converter.body_width = 0
    converter.ignore_images = True
    return converter.handle(html_body).strip() + "\n"


def build_mail(content: Content, reason: str, domain: str) -> Dict[str, Any]:
    """Everything the transport needs for one event group, minus recipients."""
    html_body = format_mail_html(content, reason)
    return {
        'subject': format_mail_subject(content, reason),
        'html': html_body,
        'text': format_mail_text(html_body),
        'headers': thread_headers(content, domain),
    }
