from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Tuple

from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from svc_vton.config import settings

logger = logging.getLogger("azure_storage")

_COPY_POLL_SECONDS = 0.5
_COPY_MAX_WAIT_SECONDS = 60.0


def _parse_connection_string(conn: str) -> Tuple[str, str]:
    parts: Dict[str, str] = dict(item.split("=", 1) for item in conn.split(";") if "=" in item)
    account_name = parts.get("AccountName")
    account_key = parts.get("AccountKey")
    if not account_name or not account_key:
        raise RuntimeError("could_not_parse_storage_account_credentials")
    return account_name, account_key


class AzureStorageService:
    """
    Blob store for garments, persona snapshots and rendered results.

    Path layout (per container):
      garments:  users/{user_id}/garments/{generation_id}/{filename}
      personas:  users/{user_id}/persona/persona.{ext}
                 users/{user_id}/generations/{generation_id}/persona.{ext}

    Requires:
      settings.AZURE_STORAGE_CONNECTION_STRING
    """

    def __init__(self, connection_string: str = ""):
        self.connection_string = (connection_string or settings.AZURE_STORAGE_CONNECTION_STRING).strip()
        if not self.connection_string:
            raise RuntimeError("missing_azure_storage_connection_string")

        self.blob_service = BlobServiceClient.from_connection_string(self.connection_string)
        self.account_name, self.account_key = _parse_connection_string(self.connection_string)

    def _blob_url(self, container: str, path: str) -> str:
        return f"https://{self.account_name}.blob.core.windows.net/{container}/{path}"

    def read_url(self, container: str, path: str, minutes: int) -> str:
        """Read-only SAS URL. Pure signing, no network call."""
        path = path.lstrip("/")
        sas_token = generate_blob_sas(
            account_name=self.account_name,
            container_name=container,
            blob_name=path,
            account_key=self.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(minutes=max(1, int(minutes))),
        )
        return f"{self._blob_url(container, path)}?{sas_token}"

    async def upload_bytes(self, container: str, path: str, data: bytes, content_type: str) -> str:
        path = path.lstrip("/")
        content_type = (content_type or "").strip() or "application/octet-stream"

        def _sync_upload() -> None:
            blob_client = self.blob_service.get_blob_client(container=container, blob=path)
            blob_client.upload_blob(
                data,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )

        await asyncio.to_thread(_sync_upload)
        logger.info("blob_uploaded", extra={"container": container, "path": path, "bytes": len(data)})
        return path

    async def copy_blob(self, container: str, source_path: str, target_path: str) -> str:
        """Server-side copy within one container. Returns once the copy left the pending state."""
        source_path = source_path.lstrip("/")
        target_path = target_path.lstrip("/")
        source_url = self.read_url(container, source_path, minutes=15)

        def _sync_copy() -> None:
            target = self.blob_service.get_blob_client(container=container, blob=target_path)
            target.start_copy_from_url(source_url)

            deadline = time.monotonic() + _COPY_MAX_WAIT_SECONDS
            props = target.get_blob_properties()
            while props.copy.status == "pending":
                if time.monotonic() > deadline:
                    target.abort_copy(props.copy.id)
                    raise RuntimeError(f"blob_copy_timeout: {container}/{target_path}")
                time.sleep(_COPY_POLL_SECONDS)
                props = target.get_blob_properties()

            if props.copy.status != "success":
                raise RuntimeError(f"blob_copy_{props.copy.status}: {props.copy.status_description}")

        await asyncio.to_thread(_sync_copy)
        logger.info(
            "blob_copied",
            extra={"container": container, "source_path": source_path, "path": target_path},
        )
        return target_path
