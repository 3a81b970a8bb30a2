# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Approver directory and out-of-band notification used by approval nodes.

Assignment types:
- all: every analyst
- specific: approvalConfig.assignedAnalysts
- groups: active members of approvalConfig.assignedGroups
- mixed: specific analysts plus group members
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from credflow.core.errors import ValidationError
from credflow.core.logging import get_service_logger

logger = get_service_logger("notifier")

ASSIGNMENT_TYPES = ("all", "specific", "groups", "mixed")


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


class ApprovalNotifier:
    """Interface of the approver directory and notification channel"""

    async def resolve_approvers(self, approval_config: Dict[str, Any]) -> List[str]:
        raise NotImplementedError

    async def create_approval_requests(self, step_execution_id: str, approvers: List[str]) -> None:
        raise NotImplementedError

    async def notify(self, step_execution_id: str, approvers: List[str], title: str, message: str) -> None:
        raise NotImplementedError


class InMemoryApprovalNotifier(ApprovalNotifier):
    """
    Directory of analysts and groups kept in memory.

    Approval requests and notifications are recorded as plain dicts,
    mirroring the rows the product stores.
    """

    def __init__(
        self,
        analysts: Optional[List[str]] = None,
        groups: Optional[Dict[str, List[str]]] = None
    ):
        self.analysts = list(analysts or [])
        self.groups = {group_id: list(members) for group_id, members in (groups or {}).items()}
        self.approval_requests: List[Dict[str, Any]] = []
        self.notifications: List[Dict[str, Any]] = []

    def _group_members(self, group_ids: List[str]) -> List[str]:
        members: List[str] = []
        for group_id in group_ids:
            members.extend(self.groups.get(group_id, []))
        return members

    async def resolve_approvers(self, approval_config: Dict[str, Any]) -> List[str]:
        assignment_type = approval_config.get("assignmentType", "all")
        direct = approval_config.get("assignedAnalysts") or []
        group_ids = approval_config.get("assignedGroups") or []

        if assignment_type == "all":
            return _unique(self.analysts)
        if assignment_type == "specific":
            return _unique(direct)
        if assignment_type == "groups":
            return _unique(self._group_members(group_ids))
        if assignment_type == "mixed":
            return _unique(direct + self._group_members(group_ids))

        raise ValidationError(
            f"Invalid assignmentType '{assignment_type}'. Use: {', '.join(ASSIGNMENT_TYPES)}",
            field="approvalConfig.assignmentType"
        )

    async def create_approval_requests(self, step_execution_id: str, approvers: List[str]) -> None:
        for approver_id in approvers:
            self.approval_requests.append({
                "step_execution_id": step_execution_id,
                "approver_id": approver_id,
                "decision": "pending",
                "created_at": datetime.now(timezone.utc).isoformat(),
            })

    async def notify(self, step_execution_id: str, approvers: List[str], title: str, message: str) -> None:
        for approver_id in approvers:
            self.notifications.append({
                "user_id": approver_id,
                "type": "info",
                "title": title,
                "message": message,
                "related_type": "workflow_approval",
                "related_id": step_execution_id,
            })
        logger.info(f"Notified {len(approvers)} approvers for step {step_execution_id}")
