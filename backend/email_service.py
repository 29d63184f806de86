"""
SendGrid email service for ZRS CRM
- Settlement notifications to investors (sale approved)
- Purchase invoices with the PDF attached
- Follow-up reminders to lead owners
All messages use SendGrid dynamic templates.
"""

import os
import asyncio
import logging
from typing import Any, Dict, List, Optional
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Attachment, FileContent, FileName, FileType, Disposition

from config import COLLABORATOR_TIMEOUT_SECONDS, COMPANY_NAME
from services.collaborators import NotificationService
from services.errors import CollaboratorError

logger = logging.getLogger("email_service")

# Configuration
SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY', '')
SENDER_EMAIL = os.environ.get('SENDER_EMAIL', 'noreply@zrscars.com')


class EmailService(NotificationService):
    """Central templated email sender"""

    def __init__(self, api_key: str = SENDGRID_API_KEY, sender: str = SENDER_EMAIL,
                 timeout: float = COLLABORATOR_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def _build_message(self, template_id: str, variables: Dict[str, Any],
                       recipients: List[Dict[str, str]],
                       attachments: Optional[List[Dict[str, Any]]] = None) -> Mail:
        message = Mail(
            from_email=Email(self.sender, COMPANY_NAME),
            to_emails=[To(r["email"], r.get("name")) for r in recipients],
        )
        message.template_id = template_id
        message.dynamic_template_data = variables

        for item in attachments or []:
            message.add_attachment(Attachment(
                FileContent(item["content"]),
                FileName(item["filename"]),
                FileType(item.get("type", "application/pdf")),
                Disposition("attachment"),
            ))
        return message

    def _send(self, message: Mail):
        return SendGridAPIClient(self.api_key).send(message)

    async def send_templated_email(self, template_id, variables, recipients, attachments=None) -> Dict[str, Any]:
        """Send one dynamic-template message; raises CollaboratorError on any failure"""
        if not self.api_key:
            raise CollaboratorError("SENDGRID_API_KEY is not configured")
        if not template_id:
            raise CollaboratorError("Email template id is not configured")
        recipients = [r for r in recipients if r.get("email")]
        if not recipients:
            raise CollaboratorError("No recipient with an email address")

        message = self._build_message(template_id, variables, recipients, attachments)
        try:
            response = await asyncio.wait_for(asyncio.to_thread(self._send, message), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise CollaboratorError(f"Email send timed out after {self.timeout}s")
        except Exception as e:
            raise CollaboratorError(f"Email send failed: {e}")

        if response.status_code not in (200, 202):
            raise CollaboratorError(f"Email provider returned {response.status_code}")

        message_id = response.headers.get("X-Message-Id") if response.headers else None
        emails = ", ".join(r["email"] for r in recipients)
        logger.info(f"Email sent to {emails} (template {template_id})")
        return {"message_ids": [message_id] if message_id else []}
