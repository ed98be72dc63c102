from __future__ import annotations

import re
from pathlib import PurePosixPath

from svc_vton.config import settings

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.\-_]+")


def sanitize_filename(filename: str) -> str:
    name = _UNSAFE_FILENAME_CHARS.sub("_", (filename or "").strip())
    return name or "garment"


def garment_snapshot_path(user_id: str, generation_id: str, filename: str) -> str:
    return f"users/{user_id}/garments/{generation_id}/{sanitize_filename(filename)}"


def persona_snapshot_path(user_id: str, generation_id: str, persona_path: str) -> str:
    ext = PurePosixPath(persona_path or "").suffix.lstrip(".").lower() or "png"
    return f"users/{user_id}/generations/{generation_id}/persona.{ext}"


class AssetSnapshotter:
    """
    Writes the per-generation copies of both inputs.
    Paths are derived only from ids and the filename, never from mutable profile state.
    """

    def __init__(self, storage):
        self.storage = storage
        self.garment_container = settings.VTON_GARMENT_CONTAINER
        self.persona_container = settings.VTON_PERSONA_CONTAINER

    async def persist_garment(
        self,
        *,
        user_id: str,
        generation_id: str,
        filename: str,
        data: bytes,
        content_type: str,
    ) -> str:
        path = garment_snapshot_path(user_id, generation_id, filename)
        await self.storage.upload_bytes(self.garment_container, path, data, content_type)
        return path

    async def snapshot_persona(self, *, user_id: str, generation_id: str, persona_path: str) -> str:
        path = persona_snapshot_path(user_id, generation_id, persona_path)
        await self.storage.copy_blob(self.persona_container, persona_path, path)
        return path
