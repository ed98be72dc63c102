from datetime import timedelta

import pytest

from conftest import NOW, USER_ID, image_bytes
from svc_vton.domain.enums import GenerationErrorCode
from svc_vton.domain.errors import GenerationServiceError
from svc_vton.services.profile_service import ProfileService, build_profile_view, persona_storage_path

NEW_USER = "3f0d5c1a-8b8e-4a55-9a43-5d2f3b1c0e77"


@pytest.fixture
def service(profiles, storage):
    return ProfileService(profiles, storage, now=lambda: NOW)


def test_build_profile_view(profiles):
    row = profiles.rows[USER_ID]
    row.update(free_generation_used=1, garment_path="users/u/garments/g/s.png", garment_expires_at=NOW)

    view = build_profile_view(row, "v1")

    assert view.user_id == USER_ID
    assert view.persona.path == f"users/{USER_ID}/persona/persona.png"
    assert view.persona.width == 1024
    assert view.consent.is_compliant is True
    assert view.consent.required_version == "v1"
    assert (view.quota.total, view.quota.used, view.quota.remaining) == (3, 1, 2)
    assert view.garment_cache.path == "users/u/garments/g/s.png"


def test_build_profile_view_without_persona(profiles):
    row = profiles.rows[USER_ID]
    row.update(persona_path=None, consent_version="v0", free_generation_used=7)

    view = build_profile_view(row, "v1")

    assert view.persona is None
    assert view.consent.is_compliant is False
    assert view.quota.remaining == 0


@pytest.mark.asyncio
async def test_first_access_bootstraps_defaults(service, profiles):
    view = await service.get_profile_view(NEW_USER)

    assert view.consent.accepted_version == "v0"
    assert view.consent.is_compliant is False
    assert view.quota.total == 3
    assert view.quota.remaining == 3
    assert view.quota.renews_at == NOW + timedelta(days=30)
    assert view.persona is None
    assert NEW_USER in profiles.rows


@pytest.mark.asyncio
async def test_accept_current_consent(service):
    state = await service.accept_consent(NEW_USER, "v1")

    assert state.accepted_version == "v1"
    assert state.accepted_at == NOW
    assert state.is_compliant is True


@pytest.mark.asyncio
async def test_accept_outdated_consent_is_rejected(service):
    with pytest.raises(GenerationServiceError) as exc:
        await service.accept_consent(USER_ID, "v0")

    assert exc.value.code == GenerationErrorCode.invalid_request


@pytest.mark.asyncio
async def test_persona_requires_consent(service, storage):
    with pytest.raises(GenerationServiceError) as exc:
        await service.upload_persona(NEW_USER, data=image_bytes(1024, 1024), content_type="image/png")

    assert exc.value.code == GenerationErrorCode.consent_mismatch
    assert storage.uploads == []


@pytest.mark.asyncio
async def test_persona_upload(service, storage, profiles):
    data = image_bytes(1024, 1280, "JPEG")

    result = await service.upload_persona(USER_ID, data=data, content_type="image/jpeg")

    assert result.persona.path == f"users/{USER_ID}/persona/persona.jpg"
    assert (result.persona.width, result.persona.height) == (1024, 1280)
    assert result.consent.is_compliant is True
    assert storage.uploads == [("vton-personas", result.persona.path, len(data), "image/jpeg")]
    assert profiles.rows[USER_ID]["persona_path"] == result.persona.path
    assert profiles.rows[USER_ID]["persona_height"] == 1280


@pytest.mark.asyncio
async def test_persona_too_small(service, storage):
    with pytest.raises(GenerationServiceError) as exc:
        await service.upload_persona(USER_ID, data=image_bytes(512, 512), content_type="image/png")

    assert exc.value.code == GenerationErrorCode.invalid_request
    assert exc.value.context["reason"] == "below_min_resolution"
    assert storage.uploads == []


@pytest.mark.asyncio
async def test_persona_storage_failure(service, storage):
    storage.fail_upload = True

    with pytest.raises(GenerationServiceError) as exc:
        await service.upload_persona(USER_ID, data=image_bytes(1024, 1024), content_type="image/png")

    assert exc.value.code == GenerationErrorCode.storage_failure


def test_persona_storage_path():
    assert persona_storage_path("u", "image/png") == "users/u/persona/persona.png"
    assert persona_storage_path("u", "image/jpeg") == "users/u/persona/persona.jpg"
