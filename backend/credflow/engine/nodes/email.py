# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Email node - renders emailConfig templates and hands the message to the
mail collaborator.
"""

from typing import Any, List

from credflow.core.errors import CredflowError
from credflow.integrations.mail import EmailMessage
from .base import NodeHandler, NodeOutcome, register_handler


def _recipients(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.replace(";", ",").split(",") if part.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


@register_handler("email")
class EmailHandler(NodeHandler):
    """
    emailConfig:
        to: address, comma-separated list or list (templated)
        cc, bcc: same as to
        subject: template
        body: HTML template (alias: html)
        from: optional sender override
    """

    async def execute(self, node, context, step):
        email_config = node.config("emailConfig")

        to = _recipients(context.resolve(email_config.get("to")))
        if not to:
            return NodeOutcome.failed("Email node has no recipient")

        message = EmailMessage(
            to=to,
            cc=_recipients(context.resolve(email_config.get("cc"))),
            bcc=_recipients(context.resolve(email_config.get("bcc"))),
            subject=str(context.resolve(email_config.get("subject", ""))),
            html=str(context.resolve(email_config.get("body", email_config.get("html", "")))),
            from_address=email_config.get("from"),
        )

        try:
            message_id = await self.services.mail.send(message)
        except CredflowError as e:
            return NodeOutcome.failed(f"Email send failed: {e.message}")

        return NodeOutcome.completed({
            "emailSent": True,
            "emailId": message_id,
            "emailRecipients": to,
        })
