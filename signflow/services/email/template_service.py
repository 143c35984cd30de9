"""Email templates for signature workflow notifications."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class TemplateError(Exception):
    """Exception raised for template errors."""


@dataclass
class EmailTemplate:
    """Email template definition."""
    id: str
    subject: str
    html_template: str
    text_template: Optional[str] = None
    description: Optional[str] = None


# =============================================================================
# Built-in Templates
# =============================================================================

_SIGNING_LINK_HTML = """
<p><a href="{{ signing_url }}" style="display:inline-block;padding:10px 18px;background:#1b5e20;color:#fff;text-decoration:none;border-radius:4px">Review and sign</a></p>
<p style="color:#666;font-size:12px">Or open this link: {{ signing_url }}</p>
{% if expires_at %}<p style="color:#666;font-size:12px">This request expires on {{ expires_at | date:"%Y-%m-%d %H:%M UTC" }}.</p>{% endif %}
"""

BUILT_IN_TEMPLATES = [
    EmailTemplate(
        id="signature_request",
        description="First notification to a recipient",
        subject="Signature requested: {{ title }}",
        html_template=(
            "<p>Hello {{ name }},</p>"
            "<p>You have been asked to sign <strong>{{ title }}</strong>.</p>"
            "{% if message %}<blockquote>{{ message }}</blockquote>{% endif %}"
            + _SIGNING_LINK_HTML
        ),
        text_template=(
            "Hello {{ name }},\n\nYou have been asked to sign {{ title }}.\n"
            "{% if message %}\n{{ message }}\n{% endif %}\n"
            "Review and sign: {{ signing_url }}\n"
        ),
    ),
    EmailTemplate(
        id="signature_reminder",
        description="Reminder for a recipient who has not signed",
        subject="Reminder: please sign {{ title }}",
        html_template=(
            "<p style=\"background:#fff3cd;padding:8px\">Reminder {{ reminder_count }}: this document is still waiting for your signature.</p>"
            "<p>Hello {{ name }},</p>"
            "<p><strong>{{ title }}</strong> still needs your signature.</p>"
            "{% if message %}<blockquote>{{ message }}</blockquote>{% endif %}"
            + _SIGNING_LINK_HTML
        ),
        text_template=(
            "Reminder: {{ title }} still needs your signature.\n\n"
            "Review and sign: {{ signing_url }}\n"
        ),
    ),
    EmailTemplate(
        id="signature_your_turn",
        description="Sent to the next recipient of an ordered request",
        subject="It's your turn to sign {{ title }}",
        html_template=(
            "<p>Hello {{ name }},</p>"
            "<p>The previous signer has finished. <strong>{{ title }}</strong> is ready for your signature.</p>"
            + _SIGNING_LINK_HTML
        ),
        text_template=(
            "Hello {{ name }},\n\n{{ title }} is ready for your signature.\n\n"
            "Review and sign: {{ signing_url }}\n"
        ),
    ),
    EmailTemplate(
        id="signature_completed",
        description="Sent to every recipient once all have signed",
        subject="Completed: {{ title }}",
        html_template=(
            "<p>Hello {{ name }},</p>"
            "<p>Every recipient has signed <strong>{{ title }}</strong>. No further action is needed.</p>"
        ),
        text_template="Hello {{ name }},\n\nEvery recipient has signed {{ title }}.\n",
    ),
]


class EmailTemplateService:
    """
    Registry and renderer for email templates.

    Supports ``{{ variable }}`` substitution with optional ``| filter:"arg"``
    and ``{% if variable %}...{% endif %}`` blocks. Variables are HTML
    escaped in HTML bodies.
    """

    VARIABLE_PATTERN = re.compile(r'\{\{\s*(\w+(?:\.\w+)*)\s*(?:\|\s*(\w+)(?::"([^"]*)")?)?\s*\}\}')
    IF_PATTERN = re.compile(r'\{%\s*if\s+(\w+(?:\.\w+)*)\s*%\}(.*?)\{%\s*endif\s*%\}', re.DOTALL)

    def __init__(self):
        self._templates: Dict[str, EmailTemplate] = {}
        for template in BUILT_IN_TEMPLATES:
            self.register_template(template)

    def register_template(self, template: EmailTemplate) -> None:
        self._templates[template.id] = template
        logger.debug(f"Registered email template: {template.id}")

    def get_template(self, template_id: str) -> Optional[EmailTemplate]:
        return self._templates.get(template_id)

    def render(self, template_id: str, context: Dict[str, Any]) -> Tuple[str, str, Optional[str]]:
        """
        Render a template with context data.

        Returns:
            Tuple of (subject, html_content, text_content)

        Raises:
            TemplateError: If template not found
        """
        template = self._templates.get(template_id)
        if not template:
            raise TemplateError(f"Template not found: {template_id}")

        subject = self.render_string(template.subject, context, escape_html=False)
        html = self.render_string(template.html_template, context, escape_html=True)
        text = None
        if template.text_template:
            text = self.render_string(template.text_template, context, escape_html=False)
        return subject, html, text

    def render_string(self, template: str, context: Dict[str, Any], escape_html: bool = True) -> str:
        def replace_if(match):
            if self._resolve_path(match.group(1), context):
                return match.group(2)
            return ""

        def replace_var(match):
            value = self._resolve_path(match.group(1), context)
            filter_name, filter_arg = match.group(2), match.group(3)
            if filter_name == "date":
                value = self._format_date(value, filter_arg or "%Y-%m-%d")
            elif filter_name == "default" and (value is None or value == ""):
                value = filter_arg
            if value is None:
                return ""
            text = str(value)
            return self._html_escape(text) if escape_html else text

        result = self.IF_PATTERN.sub(replace_if, template)
        return self.VARIABLE_PATTERN.sub(replace_var, result)

    @staticmethod
    def _resolve_path(path: str, context: Dict[str, Any]) -> Any:
        value: Any = context
        for part in path.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            else:
                value = getattr(value, part, None)
            if value is None:
                return None
        return value

    @staticmethod
    def _format_date(value: Any, format_str: str) -> str:
        if not value:
            return ""
        if isinstance(value, datetime):
            return value.strftime(format_str)
        return str(value)

    @staticmethod
    def _html_escape(text: str) -> str:
        return (
            text.replace("&", "&amp;")
            .replace("<", "&lt;")
            .replace(">", "&gt;")
            .replace('"', "&quot;")
            .replace("'", "&#x27;")
        )
