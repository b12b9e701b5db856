import os
import unittest

from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from elepy.main import create_app
from elepy.schemas.model import Property, PropertyType, Schema
from elepy.services.registry import ModelRegistry


class HttpHardeningTests(unittest.TestCase):
    def setUp(self):
        registry = ModelRegistry()
        registry.register(
            Schema(name="Item", slug="items", properties=(Property(name="id", type=PropertyType.NUMBER),))
        )
        self.client = TestClient(create_app(registry))

    def tearDown(self):
        self.client.close()

    def test_health_has_security_headers_and_request_id(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)

        self.assertEqual(response.headers.get("x-content-type-options"), "nosniff")
        self.assertEqual(response.headers.get("x-frame-options"), "DENY")
        self.assertEqual(response.headers.get("cache-control"), "no-store")

        request_id = response.headers.get("x-request-id")
        self.assertIsNotNone(request_id)
        self.assertRegex(str(request_id), r"^[A-Za-z0-9._-]{1,128}$")

    def test_valid_request_id_is_preserved(self):
        response = self.client.get("/health", headers={"X-Request-ID": "release-check-2026_02_23"})
        self.assertEqual(response.headers.get("x-request-id"), "release-check-2026_02_23")

    def test_invalid_request_id_is_replaced(self):
        response = self.client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
        self.assertNotEqual(response.headers.get("x-request-id"), "bad id with spaces")
        self.assertRegex(str(response.headers.get("x-request-id")), r"^[A-Za-z0-9._-]{1,128}$")

    def test_error_response_keeps_security_headers_and_request_id(self):
        # No credentials => 401 from the permission dependency.
        response = self.client.post("/items", json={})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.headers.get("x-content-type-options"), "nosniff")
        self.assertTrue(bool(response.headers.get("x-request-id")))

    def test_query_errors_are_logged_with_status(self):
        with self.assertLogs("elepy.http", level="INFO") as logs:
            response = self.client.get("/items?pageSize=abc")
        self.assertEqual(response.status_code, 400)
        self.assertTrue(any("status=400" in line and "/items" in line for line in logs.output))
        self.assertTrue(any("model=items" in line for line in logs.output))

    def test_listing_logs_the_model_and_filter_count(self):
        with self.assertLogs("elepy.http", level="INFO") as logs:
            response = self.client.get("/items?id_equals=1&id_gt=0")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(any("model=items filters=2 status=200" in line for line in logs.output))

        with self.assertLogs("elepy.http", level="INFO") as logs:
            self.client.get("/health")
        self.assertTrue(any("model=- filters=-" in line for line in logs.output))
