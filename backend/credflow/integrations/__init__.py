# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
External collaborators called by node handlers.

Each collaborator is a small interface with an HTTP-backed implementation
and/or an in-memory one.
"""

from credflow.integrations.datastore import DataStore, InMemoryDataStore
from credflow.integrations.documents import OCRClient, SignatureClient
from credflow.integrations.mail import EmailMessage, MailSender, OutboxMailSender, ResendMailSender
from credflow.integrations.notifier import ApprovalNotifier, InMemoryApprovalNotifier

__all__ = [
    "DataStore",
    "InMemoryDataStore",
    "OCRClient",
    "SignatureClient",
    "EmailMessage",
    "MailSender",
    "OutboxMailSender",
    "ResendMailSender",
    "ApprovalNotifier",
    "InMemoryApprovalNotifier",
]
