"""
Unit tests for the plugin management API routes.

The extractor dependency is overridden with one bound to tmp_path.
"""

from typing import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.routes.plugin_management import get_plugin_extractor
from app.services.plugins import PluginExtractor


def upload(client: TestClient, data: bytes, filename: str = "hello-plugin.zip"):
    return client.post("/plugins/upload", files={"file": (filename, data, "application/zip")})


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    app = create_app()
    extractor = PluginExtractor(settings)
    app.dependency_overrides[get_plugin_extractor] = lambda: extractor
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.mark.unit
class TestUploadPlugin:
    """POST /plugins/upload"""

    def test_upload_clean_plugin(self, client: TestClient, make_zip: Callable[..., bytes]) -> None:
        response = upload(client, make_zip())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["plugin"] == {
            "id": "hello-plugin",
            "name": "Hello Plugin",
            "version": "1.0.0",
            "description": "Shows a greeting on the dashboard",
        }
        assert body["security_score"] == 100

    def test_missing_file(self, client: TestClient) -> None:
        response = client.post("/plugins/upload")
        assert response.status_code == 400
        assert response.json()["detail"] == "No file uploaded"

    def test_non_zip_upload(self, client: TestClient, make_zip: Callable[..., bytes]) -> None:
        response = upload(client, make_zip(), filename="plugin.tar.gz")
        assert response.status_code == 400
        assert response.json()["detail"] == "File must be a ZIP archive"

    def test_oversized_upload(self, settings: Settings, make_zip: Callable[..., bytes]) -> None:
        app = create_app()
        extractor = PluginExtractor(settings.model_copy(update={"max_upload_size": 64}))
        app.dependency_overrides[get_plugin_extractor] = lambda: extractor

        response = upload(TestClient(app), make_zip())

        assert response.status_code == 400
        assert response.json()["detail"].startswith("File size must be less than")

    def test_failed_admission_returns_report(
        self, client: TestClient, make_zip: Callable[..., bytes], bundle_files
    ) -> None:
        index = bundle_files["index.tsx"] + "\neval(payload);\n"
        response = upload(client, make_zip(overrides={"index.tsx": index}))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["message"].startswith("Plugin failed security scan (score: 70/100)")
        assert body["security_score"] == 70
        assert "# Plugin Security Scan Report" in body["security_report"]
        assert body["plugin"] is None

    def test_duplicate_upload(self, client: TestClient, make_zip: Callable[..., bytes]) -> None:
        assert upload(client, make_zip()).status_code == 200
        response = upload(client, make_zip())
        assert response.status_code == 400
        assert "already exists" in response.json()["message"]


@pytest.mark.unit
class TestRemoveAndListPlugins:
    """DELETE /plugins/{id} and GET /plugins/"""

    def test_remove_plugin(self, client: TestClient, make_zip: Callable[..., bytes]) -> None:
        upload(client, make_zip())

        response = client.delete("/plugins/hello-plugin")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": 'Successfully removed plugin "Hello Plugin"'}

    def test_remove_missing_plugin(self, client: TestClient) -> None:
        response = client.delete("/plugins/ghost")
        assert response.status_code == 404
        assert response.json()["detail"] == 'Plugin "ghost" not found'

    def test_list_plugins(self, client: TestClient, make_zip: Callable[..., bytes]) -> None:
        assert client.get("/plugins/").json() == {"success": True, "plugins": []}

        upload(client, make_zip())
        body = client.get("/plugins/").json()

        assert body["success"] is True
        assert [plugin["id"] for plugin in body["plugins"]] == ["hello-plugin"]
        assert body["plugins"][0]["requiredPermissions"][0]["permission"] == "btcpay.store.canviewinvoices"

    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json()["status"] == "healthy"
