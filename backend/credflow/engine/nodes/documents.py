# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Document nodes: digital signature and OCR.
"""

from typing import Any, Dict

from credflow.core.errors import CredflowError
from credflow.core.logging import get_engine_logger
from .base import NodeHandler, NodeOutcome, register_handler

logger = get_engine_logger("documents")


def _document(config: Dict[str, Any], context) -> Any:
    """Document comes from context[documentKey] or inline config.document"""
    key = config.get("documentKey")
    if key:
        return context.get(key)
    return context.resolve_object(config.get("document"))


@register_handler("signature")
class SignatureHandler(NodeHandler):
    """
    Requests a signature and waits for the provider callback.

    signatureConfig:
        documentKey: context key holding the document (or inline document)
        signers: [{name, email}] (templated)
    """

    async def execute(self, node, context, step):
        if self.services.signature is None:
            return NodeOutcome.failed("Signature provider not configured")

        signature_config = node.config("signatureConfig")
        document = _document(signature_config, context)
        if not document:
            return NodeOutcome.failed("Signature node has no document")

        signers = context.resolve_object(signature_config.get("signers") or [])
        if not signers:
            return NodeOutcome.failed("Signature node has no signers")

        try:
            request = await self.services.signature.request_signature(document, signers, step.id)
        except CredflowError as e:
            return NodeOutcome.failed(f"Signature request failed: {e.message}")

        return NodeOutcome.paused(step.id, {
            "signatureRequestId": request.get("id"),
            "signatureStatus": request.get("status", "pending"),
        })


@register_handler("ocr")
class OCRHandler(NodeHandler):
    """
    ocrConfig:
        documentKey: context key holding the document
        expectedFields: field names to extract
        minConfidence: 0-100, default 0
    """

    async def execute(self, node, context, step):
        if self.services.ocr is None:
            return NodeOutcome.failed("OCR service not configured")

        ocr_config = node.config("ocrConfig")
        document = _document(ocr_config, context)
        if not document:
            return NodeOutcome.failed(f"OCR document not found: {ocr_config.get('documentKey')}")

        try:
            result = await self.services.ocr.extract(document, ocr_config.get("expectedFields") or [])
        except CredflowError as e:
            return NodeOutcome.failed(f"OCR failed: {e.message}")

        output = {
            "ocrResult": result["text"],
            "ocrFields": result["fields"],
            "ocrConfidence": result["confidence"],
        }

        min_confidence = float(ocr_config.get("minConfidence", 0))
        if result["confidence"] < min_confidence:
            logger.warning(f"OCR confidence {result['confidence']} below {min_confidence} on node {node.id}")
            return NodeOutcome.failed(
                f"OCR confidence {result['confidence']:.1f} below minimum {min_confidence:.1f}",
                output
            )

        return NodeOutcome.completed(output)
