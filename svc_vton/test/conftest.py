import io
import itertools
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image

from svc_vton.services.providers.base import EnqueueResult

USER_ID = "7b0c9a52-3a51-4d6e-9d7c-0c4f3a1e2b11"
NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def image_bytes(width=512, height=512, fmt="PNG"):
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (180, 40, 90)).save(buf, format=fmt)
    return buf.getvalue()


class FakeProfilesRepo:
    def __init__(self):
        self.rows = {}
        self.updates = []
        self.fail_get = False
        self.fail_record = False

    def add(self, user_id=USER_ID, **overrides):
        row = {
            "user_id": user_id,
            "persona_path": "users/%s/persona/persona.png" % user_id,
            "persona_width": 1024,
            "persona_height": 1024,
            "persona_content_type": "image/png",
            "consent_version": "v1",
            "consent_accepted_at": NOW - timedelta(days=1),
            "free_generation_quota": 3,
            "free_generation_used": 0,
            "quota_renewal_at": NOW + timedelta(days=30),
            "garment_path": None,
            "garment_expires_at": None,
            "created_at": NOW - timedelta(days=2),
            "updated_at": NOW - timedelta(days=1),
        }
        row.update(overrides)
        self.rows[user_id] = row
        return row

    async def get_profile(self, user_id):
        if self.fail_get:
            raise ConnectionError("db down")
        row = self.rows.get(user_id)
        return dict(row) if row else None

    async def create_default_profile(self, user_id, *, consent_version, free_generation_quota, quota_renewal_at):
        if user_id in self.rows:
            return
        self.add(
            user_id,
            persona_path=None,
            persona_width=None,
            persona_height=None,
            persona_content_type=None,
            consent_version=consent_version,
            free_generation_quota=free_generation_quota,
            quota_renewal_at=quota_renewal_at,
        )

    async def record_generation(self, user_id, *, garment_path, garment_expires_at, free_generation_used):
        if self.fail_record:
            raise ConnectionError("db down")
        self.updates.append(user_id)
        self.rows[user_id].update(
            garment_path=garment_path,
            garment_expires_at=garment_expires_at,
            free_generation_used=free_generation_used,
        )

    async def accept_consent(self, user_id, *, version, accepted_at):
        row = self.rows.get(user_id)
        if not row:
            return None
        row.update(consent_version=version, consent_accepted_at=accepted_at)
        return dict(row)

    async def set_persona(self, user_id, *, path, width, height, content_type, updated_at):
        row = self.rows.get(user_id)
        if not row:
            return None
        row.update(
            persona_path=path,
            persona_width=width,
            persona_height=height,
            persona_content_type=content_type,
            updated_at=updated_at,
        )
        return dict(row)


class FakeGenerationsRepo:
    def __init__(self):
        self.rows = {}
        self.fail_insert = False
        self.fail_set_job_id = False

    def add(self, generation_id, user_id=USER_ID, **overrides):
        row = {
            "id": generation_id,
            "user_id": user_id,
            "status": "queued",
            "persona_path_snapshot": "users/%s/generations/%s/persona.png" % (user_id, generation_id),
            "garment_path_snapshot": "users/%s/garments/%s/shirt.png" % (user_id, generation_id),
            "vertex_job_id": None,
            "result_path": None,
            "error_reason": None,
            "user_rating": None,
            "created_at": NOW,
            "started_at": None,
            "completed_at": None,
            "expires_at": NOW + timedelta(hours=48),
            "rated_at": None,
        }
        row.update(overrides)
        self.rows[generation_id] = row
        return row

    async def insert_generation(self, row):
        if self.fail_insert:
            raise ConnectionError("db down")
        return self.add(
            row["id"],
            row["user_id"],
            status=row["status"],
            persona_path_snapshot=row["persona_path_snapshot"],
            garment_path_snapshot=row["garment_path_snapshot"],
            expires_at=row["expires_at"],
            created_at=row["created_at"],
        ).copy()

    async def set_vertex_job_id(self, generation_id, vertex_job_id):
        if self.fail_set_job_id:
            raise ConnectionError("db down")
        row = self.rows[generation_id]
        if row["vertex_job_id"] is None:
            row["vertex_job_id"] = vertex_job_id

    async def get_generation(self, generation_id, user_id):
        row = self.rows.get(generation_id)
        if not row or row["user_id"] != user_id:
            return None
        return dict(row)

    async def get_by_vertex_job_id(self, vertex_job_id):
        for row in self.rows.values():
            if row["vertex_job_id"] == vertex_job_id:
                return dict(row)
        return None

    async def apply_transition(self, generation_id, *, from_statuses, changes):
        row = self.rows.get(generation_id)
        if not row or row["status"] not in list(from_statuses):
            return None
        row.update(changes)
        return dict(row)

    async def set_rating(self, generation_id, user_id, *, rating, rated_at, now):
        row = self.rows.get(generation_id)
        if not row or row["user_id"] != user_id or row["status"] != "succeeded":
            return None
        if row["expires_at"] is not None and row["expires_at"] <= now:
            return None
        row.update(user_rating=rating, rated_at=rated_at)
        return dict(row)


class FakeStorage:
    def __init__(self):
        self.uploads = []
        self.copies = []
        self.fail_upload = False
        self.fail_copy = False

    def read_url(self, container, path, minutes):
        return "https://blob.test/%s/%s?ttl=%d" % (container, path, minutes)

    async def upload_bytes(self, container, path, data, content_type):
        if self.fail_upload:
            raise OSError("blob unavailable")
        self.uploads.append((container, path, len(data), content_type))
        return path

    async def copy_blob(self, container, source_path, target_path):
        if self.fail_copy:
            raise OSError("blob unavailable")
        self.copies.append((container, source_path, target_path))
        return target_path


class FakeJobRunner:
    provider_name = "fake"

    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result or EnqueueResult(job_id="jobs/123", eta_seconds=90)
        self.error = error

    async def enqueue_job(self, job):
        self.calls.append(job)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def profiles():
    repo = FakeProfilesRepo()
    repo.add()
    return repo


@pytest.fixture
def generations():
    return FakeGenerationsRepo()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def job_runner():
    return FakeJobRunner()


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: "00000000-0000-4000-8000-%012d" % next(counter)


@pytest.fixture
def garment_png():
    return image_bytes(512, 512)
