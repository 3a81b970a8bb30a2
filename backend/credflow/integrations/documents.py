# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Document collaborators: digital signature provider and OCR service.

Both are plain JSON-over-HTTP boundaries reached through httpx.
"""

from typing import Any, Dict, List, Optional

import httpx

from credflow.core.errors import ServiceUnavailableError
from credflow.core.logging import get_service_logger
from credflow.integrations.http import create_http_client

logger = get_service_logger("documents")


async def _post_json(
    url: str,
    payload: Dict[str, Any],
    service: str,
    api_key: Optional[str],
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport]
) -> Dict[str, Any]:
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
    async with create_http_client(timeout, transport) as client:
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(f"{service} unreachable: {e}", service=service)

    if not response.is_success:
        raise ServiceUnavailableError(
            f"{service} returned {response.status_code}: {response.text[:200]}",
            service=service
        )
    return response.json() if response.content else {}


class SignatureClient:
    """
    Digital signature provider.

    request_signature creates a signature request for a document and
    returns the provider's request id; the provider later calls back and
    the waiting signature step is resumed through continue-workflow.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def request_signature(
        self,
        document: Dict[str, Any],
        signers: List[Dict[str, Any]],
        callback_reference: str
    ) -> Dict[str, Any]:
        data = await _post_json(
            f"{self.api_url}/signature-requests",
            {"document": document, "signers": signers, "external_reference": callback_reference},
            service="signature",
            api_key=self.api_key,
            timeout=self.timeout,
            transport=self.transport,
        )
        logger.info(f"Signature request created for {callback_reference}: {data.get('id')}")
        return data


class OCRClient:
    """OCR service: extracts text and fields from a document"""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def extract(self, document: Dict[str, Any], expected_fields: List[str]) -> Dict[str, Any]:
        """
        Returns:
            {"text": str, "fields": {...}, "confidence": float 0-100}
        """
        data = await _post_json(
            self.api_url,
            {"document": document, "fields": expected_fields},
            service="ocr",
            api_key=self.api_key,
            timeout=self.timeout,
            transport=self.transport,
        )
        return {
            "text": data.get("text", ""),
            "fields": data.get("fields", {}),
            "confidence": float(data.get("confidence", 0)),
        }
