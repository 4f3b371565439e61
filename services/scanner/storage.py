"""Download uploaded mapping sheets from Supabase Storage."""

from urllib.parse import quote

import httpx

from common.errors import StorageError
from common.logs import log_debug

DEFAULT_TIMEOUT = 30.0


class SupabaseStorage:
    def __init__(self, base_url: str, service_role_key: str, bucket: str, client: httpx.Client | None = None):
        self.bucket = bucket
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=DEFAULT_TIMEOUT,
        )
        self._headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }

    def close(self):
        self._client.close()

    def download(self, path: str) -> bytes:
        object_path = quote(path.lstrip("/"), safe="/")
        url = f"/storage/v1/object/{self.bucket}/{object_path}"
        try:
            response = self._client.get(url, headers=self._headers)
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to download {path}: {e}") from e

        if response.status_code >= 400:
            raise StorageError(
                f"Failed to download {path}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        log_debug("document_downloaded", path=path, size_bytes=len(response.content))
        return response.content
