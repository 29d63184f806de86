"""
ZRS CRM - Collaborator interfaces

The lifecycle, approval and settlement code never imports a concrete client.
server.py builds one Collaborators at startup and routes hand it down.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import Request


class SignatureService:
    """E-signature provider"""

    async def send_agreement(
        self,
        investor: Dict[str, Any],
        lead: Dict[str, Any],
        purchase_order: Dict[str, Any],
        allocation: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Returns {"envelope_id", "status"}; raises CollaboratorError"""
        raise NotImplementedError

    async def fetch_signed_documents(self, envelope_id: str) -> List[Dict[str, Any]]:
        """Returns [{"document_id", "name", "file_type", "file_size", "content", "uri"}]"""
        raise NotImplementedError


class NotificationService:
    """Templated email provider"""

    async def send_templated_email(
        self,
        template_id: str,
        variables: Dict[str, Any],
        recipients: List[Dict[str, str]],
        attachments: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Returns {"message_ids": [...]}; raises CollaboratorError"""
        raise NotImplementedError


@dataclass
class Collaborators:
    signature: SignatureService
    email: NotificationService


def get_collaborators(request: Request) -> Collaborators:
    """FastAPI dependency: the instance built at startup"""
    return request.app.state.collaborators
