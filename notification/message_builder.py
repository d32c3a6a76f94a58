import html
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel

APP_NAME = "Finance Tracker"

PLACEHOLDER_PATTERN = re.compile(r'\{\{(\w+)\}\}')

TEMPLATE_BY_TYPE = {
    'goal_reminder': 'goal-reminder',
    'goal_achieved': 'goal-achieved',
    'goal_milestone': 'goal-milestone',
    'income_added': 'income-added',
    'expense_alert': 'expense-alert',
    'savings_milestone': 'savings-milestone',
    'bill_reminder': 'bill-reminder',
    'security_alert': 'security-alert',
    'account_update': 'account-update',
    'marketing': 'marketing',
    'system': 'system',
}

DEFAULT_TEMPLATE = 'default'

_LAYOUT = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{{title}}</title>
    <style>
        body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; margin: 0; padding: 0; }
        .container { max-width: 600px; margin: 0 auto; background: white; }
        .header { background: #6366F1; color: white; padding: 30px 20px; text-align: center; }
        .content { padding: 30px 20px; }
        .highlight { background: #f3f4f6; padding: 20px; text-align: center; margin: 20px 0; border-radius: 8px; }
        .footer { padding: 20px; text-align: center; color: #666; border-top: 1px solid #eee; }
    </style>
</head>
<body>
    <div class="container">
        <div class="header"><h1>{{appName}}</h1></div>
        <div class="content">
            <h2>{{title}}</h2>
            <p>Hello {{userName}},</p>
%s
        </div>
        <div class="footer"><p>&copy; {{year}} {{appName}}</p></div>
    </div>
</body>
</html>"""

TEMPLATES: Dict[str, str] = {
    DEFAULT_TEMPLATE: _LAYOUT % """            <p>{{message}}</p>""",
    'goal-achieved': _LAYOUT % """            <p>{{message}}</p>
            <div class="highlight"><strong>{{goalTitle}}</strong><br/>Target reached: {{targetAmount}}</div>""",
    'goal-milestone': _LAYOUT % """            <p>{{message}}</p>
            <div class="highlight"><strong>{{goalTitle}}</strong><br/>{{percentage}}% funded</div>""",
    'goal-reminder': _LAYOUT % """            <p>{{message}}</p>
            <p>Keep an eye on your goals so the deadline does not sneak up on you.</p>""",
    'savings-milestone': _LAYOUT % """            <p>{{message}}</p>
            <div class="highlight"><strong>{{milestone}}</strong> saved in total</div>""",
    'security-alert': _LAYOUT % """            <p>{{message}}</p>
            <div class="highlight">{{alertType}}<br/>{{details}}</div>
            <p>If this was not you, change your password immediately.</p>""",
}


class EmailContent(BaseModel):
    subject: str
    html: str
    text: str
    template: str


class NotificationMessageBuilder:
    @staticmethod
    def template_for_type(notification_type: str) -> str:
        """Template name for a notification type, 'default' when unknown."""
        return TEMPLATE_BY_TYPE.get(getattr(notification_type, 'value', notification_type), DEFAULT_TEMPLATE)

    @staticmethod
    def render_template(template_name: str, data: Dict[str, Any]) -> str:
        """
        Substitute {{key}} placeholders with HTML-escaped values.

        Names with no registered template fall back to the default layout.
        Placeholders without a value are left as-is.
        """
        template = TEMPLATES.get(template_name) or TEMPLATES[DEFAULT_TEMPLATE]

        def replace(match):
            value = data.get(match.group(1))
            if value is None or value == '':
                return match.group(0)
            return html.escape(str(value), quote=True)

        return PLACEHOLDER_PATTERN.sub(replace, template)

    @staticmethod
    def html_to_text(html_body: str) -> str:
        """Plain-text alternative of a rendered body."""
        text = re.sub(r'<(style|title)[^>]*>.*?</\1>', ' ', html_body, flags=re.DOTALL | re.IGNORECASE)
        text = re.sub(r'<[^>]+>', ' ', text)
        text = html.unescape(text)
        return re.sub(r'\s+', ' ', text).strip()

    @staticmethod
    def build_email(
        notification,
        user_name: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> EmailContent:
        """Build the email for a notification record."""
        now = now or datetime.now(timezone.utc)
        template_name = NotificationMessageBuilder.template_for_type(notification.type)

        data: Dict[str, Any] = dict(notification.payload or {})
        data.update({
            'appName': APP_NAME,
            'userName': user_name or 'there',
            'title': notification.title,
            'message': notification.message,
            'year': now.year,
        })

        html_body = NotificationMessageBuilder.render_template(template_name, data)
        return EmailContent(
            subject=notification.title,
            html=html_body,
            text=NotificationMessageBuilder.html_to_text(html_body),
            template=template_name if template_name in TEMPLATES else DEFAULT_TEMPLATE,
        )
