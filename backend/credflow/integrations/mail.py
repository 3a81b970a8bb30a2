# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Mail collaborator used by email nodes.

ResendMailSender talks to a Resend-compatible HTTP API.
OutboxMailSender keeps messages in memory (development and tests).
"""

import uuid
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from credflow.core.errors import ServiceUnavailableError
from credflow.core.logging import get_service_logger
from credflow.integrations.http import create_http_client

logger = get_service_logger("mail")


class EmailMessage(BaseModel):
    """Rendered email ready to be sent"""
    to: List[str]
    subject: str
    html: str
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)
    from_address: Optional[str] = None


class MailSender:
    """Interface of the mail collaborator"""

    async def send(self, message: EmailMessage) -> str:
        """
        Send message.

        Returns:
            Provider message id

        Raises:
            ServiceUnavailableError: If the provider rejects the message
        """
        raise NotImplementedError


class OutboxMailSender(MailSender):
    """Records messages instead of sending them"""

    def __init__(self):
        self.sent: List[EmailMessage] = []

    async def send(self, message: EmailMessage) -> str:
        self.sent.append(message)
        message_id = f"outbox_{uuid.uuid4().hex[:12]}"
        logger.info(f"Queued email {message_id} to {', '.join(message.to)}")
        return message_id


class ResendMailSender(MailSender):
    """Resend-compatible API: POST {api_url} with a Bearer key"""

    def __init__(
        self,
        api_key: str,
        api_url: str,
        from_address: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.from_address = from_address
        self.timeout = timeout
        self.transport = transport

    async def send(self, message: EmailMessage) -> str:
        payload = {
            "from": message.from_address or self.from_address,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
        }
        if message.cc:
            payload["cc"] = message.cc
        if message.bcc:
            payload["bcc"] = message.bcc

        async with create_http_client(self.timeout, self.transport) as client:
            try:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"}
                )
            except httpx.HTTPError as e:
                raise ServiceUnavailableError(f"Mail provider unreachable: {e}", service="mail")

        if response.status_code >= 300:
            raise ServiceUnavailableError(
                f"Mail provider returned {response.status_code}: {response.text[:200]}",
                service="mail"
            )

        data = response.json() if response.content else {}
        message_id = data.get("id", "")
        logger.info(f"Sent email {message_id} to {', '.join(message.to)}")
        return message_id
