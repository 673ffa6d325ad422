"""
Tests for the worker function client.
"""
import asyncio
from uuid import uuid4

import httpx
import pytest

from app.core.exceptions import EdgeFunctionError
from app.integrations.edge_functions.client import EdgeFunctionClient


class TestEdgeFunctionClient:

    def test_invoke_posts_json_with_service_key(self, edge_client, edge_stub):
        document_id = uuid4()

        result = asyncio.run(edge_client.invoke_process_document(document_id))

        assert result == {"success": True}
        assert edge_stub.calls == [("process-document", {"documentId": str(document_id)})]

    def test_error_status_raises(self, edge_client, edge_stub):
        edge_stub.fail_all_with = 429

        with pytest.raises(EdgeFunctionError) as exc:
            asyncio.run(edge_client.generate_lesson_sections(uuid4()))

        assert exc.value.function_name == "auto-generate-sections"
        assert exc.value.status_code == 429
        assert exc.value.message == "429 worker unavailable"

    def test_transport_error_raises(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = EdgeFunctionClient(
            base_url="http://edge.test", transport=httpx.MockTransport(unreachable)
        )

        with pytest.raises(EdgeFunctionError) as exc:
            asyncio.run(client.invoke("process-document", {}))

        assert exc.value.status_code is None
        assert "connection refused" in exc.value.message

    def test_authorization_header(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(204)

        client = EdgeFunctionClient(
            base_url="http://edge.test",
            service_key="secret",
            transport=httpx.MockTransport(handler),
        )

        assert asyncio.run(client.invoke("process-document", {})) is None
        assert seen["auth"] == "Bearer secret"
