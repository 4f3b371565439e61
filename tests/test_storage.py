import httpx
import pytest

from common.errors import StorageError
from services.scanner.storage import SupabaseStorage


def _storage(handler):
    client = httpx.Client(base_url="https://example.supabase.co", transport=httpx.MockTransport(handler))
    return SupabaseStorage("https://example.supabase.co", "service-role-key", "mapping-sheet-scans", client=client)


def test_downloads_object_with_service_role_key():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["apikey"] = request.headers["apikey"]
        return httpx.Response(200, content=b"%PDF-1.4")

    content = _storage(handler).download("user-1/new-project/1700000000_sheet.pdf")

    assert content == b"%PDF-1.4"
    assert seen["path"] == "/storage/v1/object/mapping-sheet-scans/user-1/new-project/1700000000_sheet.pdf"
    assert seen["auth"] == "Bearer service-role-key"
    assert seen["apikey"] == "service-role-key"


def test_missing_object_raises_storage_error():
    with pytest.raises(StorageError) as info:
        _storage(lambda request: httpx.Response(404, json={"error": "not_found"})).download("missing.pdf")

    assert info.value.status_code == 404


def test_network_failure_raises_storage_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(StorageError, match="timed out"):
        _storage(handler).download("sheet.pdf")
