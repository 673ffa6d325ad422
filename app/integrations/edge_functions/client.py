"""HTTP client for the processing worker functions."""

from __future__ import annotations

import uuid
from typing import Any, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import EdgeFunctionError
from app.core.logging import get_logger

logger = get_logger(__name__)

PROCESS_DOCUMENT = "process-document"
GENERATE_LESSON_SECTIONS = "auto-generate-sections"


class EdgeFunctionClient:
    """Invokes worker functions at `{base_url}/{function_name}` with a service key."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.EDGE_FUNCTIONS_URL).rstrip("/")
        key = settings.EDGE_FUNCTIONS_SERVICE_KEY if service_key is None else service_key
        headers = {"Authorization": f"Bearer {key}"} if key else {}
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout or settings.EDGE_FUNCTIONS_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def invoke(self, function_name: str, body: dict[str, Any]) -> Any:
        try:
            response = await self.client.post(f"/{function_name}", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EdgeFunctionError(
                function_name,
                f"{e.response.status_code} {e.response.text}".strip(),
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise EdgeFunctionError(function_name, str(e) or type(e).__name__) from e

        logger.info("edge function invoked", function=function_name)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def invoke_process_document(self, document_id: uuid.UUID) -> Any:
        return await self.invoke(PROCESS_DOCUMENT, {"documentId": str(document_id)})

    async def generate_lesson_sections(self, lesson_id: uuid.UUID) -> Any:
        return await self.invoke(GENERATE_LESSON_SECTIONS, {"lessonId": str(lesson_id)})

    async def aclose(self) -> None:
        await self.client.aclose()
