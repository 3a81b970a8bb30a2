# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Human-in-the-loop nodes: approval and form.

Both pause the step and hand the step id back as the resume token; an
external decision arrives later through continue-workflow.
"""

from credflow.core.errors import ValidationError
from credflow.core.logging import get_engine_logger
from .base import NodeHandler, NodeOutcome, register_handler

logger = get_engine_logger("human")

APPROVAL_TITLE = "Nova Aprovação Pendente"
APPROVAL_MESSAGE = "Inscrição aguarda sua análise"


@register_handler("approval")
class ApprovalHandler(NodeHandler):
    """
    approvalConfig:
        assignmentType: all | specific | groups | mixed (default all)
        assignedAnalysts: analyst ids
        assignedGroups: group ids
        title, message: notification text (templated)
    """

    async def execute(self, node, context, step):
        approval_config = node.config("approvalConfig") or {"assignmentType": "all"}
        notifier = self.services.notifier

        try:
            approvers = await notifier.resolve_approvers(approval_config)
        except ValidationError as e:
            return NodeOutcome.failed(e.message)

        if approvers:
            await notifier.create_approval_requests(step.id, approvers)
            await notifier.notify(
                step.id,
                approvers,
                str(context.resolve(approval_config.get("title", APPROVAL_TITLE))),
                str(context.resolve(approval_config.get("message", APPROVAL_MESSAGE))),
            )
        else:
            logger.warning(f"Approval node {node.id} has no approvers assigned")

        logger.info(f"Execution {step.execution_id} paused on approval {node.id}")
        return NodeOutcome.paused(step.id, {"assignedAnalysts": approvers})


@register_handler("form")
class FormHandler(NodeHandler):
    """
    Completes immediately when every required formConfig field is already
    in the context; otherwise waits for the submission.
    """

    async def execute(self, node, context, step):
        form_config = node.config("formConfig")
        required = [
            f.get("name") or f.get("id")
            for f in form_config.get("fields", [])
            if isinstance(f, dict) and f.get("required") and (f.get("name") or f.get("id"))
        ]

        missing = context.missing_keys(required)
        if not missing:
            return NodeOutcome.completed({"formSubmitted": True})

        return NodeOutcome.paused(step.id, {"formPending": missing})
