"""Tests for FeatureFlagService."""

from __future__ import annotations

from uuid import uuid4

import pytest

from flag_service.core.exceptions import ConflictException, FlagNotFoundError, ValidationException
from flag_service.features.featureflags.models import FeatureFlag, FlagStatus
from flag_service.features.featureflags.schemas import FeatureFlagCreate, FeatureFlagUpdate
from flag_service.features.featureflags.service import FeatureFlagService

SCOPE = "website:site_1"


@pytest.fixture
def service(db_session, cache, cascade_engine) -> FeatureFlagService:
    return FeatureFlagService(db_session, cache=cache, cascade=cascade_engine)


@pytest.mark.asyncio
async def test_create_flag(service: FeatureFlagService, cache) -> None:
    flag = await service.create(
        FeatureFlagCreate(key="checkout", website_id="site_1", dependencies=["payments"]),
        created_by="user_1",
    )

    assert flag.id is not None
    assert flag.scope == SCOPE
    assert flag.status == FlagStatus.ACTIVE
    assert flag.dependencies == ["payments"]
    assert flag.created_by == "user_1"
    assert cache.invalidated_ids == [str(flag.id)]


@pytest.mark.asyncio
async def test_create_duplicate_key_conflicts(service: FeatureFlagService) -> None:
    await service.create(FeatureFlagCreate(key="checkout", website_id="site_1"))

    with pytest.raises(ConflictException) as exc_info:
        await service.create(FeatureFlagCreate(key="checkout", website_id="site_1"))

    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_same_key_in_another_scope_is_allowed(service: FeatureFlagService) -> None:
    first = await service.create(FeatureFlagCreate(key="checkout", website_id="site_1"))
    second = await service.create(FeatureFlagCreate(key="checkout", organization_id="org_1"))

    assert first.id != second.id
    assert second.scope == "org:org_1"


@pytest.mark.asyncio
async def test_create_restores_archived_flag(service: FeatureFlagService) -> None:
    original = await service.create(FeatureFlagCreate(key="checkout", website_id="site_1"))
    await service.archive(original.id)

    restored = await service.create(
        FeatureFlagCreate(key="checkout", website_id="site_1", status="inactive")
    )

    assert restored.id == original.id
    assert restored.deleted_at is None
    assert restored.status == FlagStatus.INACTIVE


@pytest.mark.asyncio
async def test_get_missing_flag(service: FeatureFlagService) -> None:
    with pytest.raises(FlagNotFoundError):
        await service.get(uuid4())


@pytest.mark.asyncio
async def test_get_by_key_returns_active_flags_only(service: FeatureFlagService, make_flag) -> None:
    await make_flag("live")
    await make_flag("paused", status=FlagStatus.INACTIVE)

    assert (await service.get_by_key(SCOPE, "live")).key == "live"
    with pytest.raises(FlagNotFoundError):
        await service.get_by_key(SCOPE, "paused")


@pytest.mark.asyncio
async def test_list_flags(service: FeatureFlagService, make_flag) -> None:
    await make_flag("a")
    await make_flag("b", status=FlagStatus.INACTIVE)

    listed = await service.list_flags(SCOPE)
    inactive = await service.list_flags(SCOPE, status=FlagStatus.INACTIVE)

    assert listed.total == 2
    assert [f.key for f in inactive.items] == ["b"]


@pytest.mark.asyncio
async def test_update_fields_without_status_change_does_not_cascade(
    service: FeatureFlagService, make_flag, reload
) -> None:
    a = await make_flag("a")
    b = await make_flag("b", dependencies=["a"])

    updated = await service.update(a.id, FeatureFlagUpdate(rollout_percentage=40, name="Renamed"))

    assert updated.rollout_percentage == 40
    assert (await reload(FeatureFlag, b.id)).status == FlagStatus.ACTIVE


@pytest.mark.asyncio
async def test_deactivating_cascades_to_dependents(service: FeatureFlagService, make_flag, reload) -> None:
    a = await make_flag("a")
    b = await make_flag("b", dependencies=["a"])

    await service.update(a.id, FeatureFlagUpdate(status=FlagStatus.INACTIVE))

    assert (await reload(FeatureFlag, b.id)).status == FlagStatus.INACTIVE


@pytest.mark.asyncio
async def test_cascade_evicts_cached_dependent(service: FeatureFlagService, make_flag) -> None:
    a = await make_flag("a")
    b = await make_flag("b", dependencies=["a"])
    assert (await service.read(b.id, SCOPE)).status == FlagStatus.ACTIVE
    assert (await service.read_by_key(SCOPE, "b")).status == FlagStatus.ACTIVE

    await service.update(a.id, FeatureFlagUpdate(status=FlagStatus.INACTIVE))

    assert (await service.read(b.id, SCOPE)).status == FlagStatus.INACTIVE
    with pytest.raises(FlagNotFoundError):
        await service.read_by_key(SCOPE, "b")


@pytest.mark.asyncio
async def test_reads_are_served_from_cache(service: FeatureFlagService, make_flag, cache) -> None:
    flag = await make_flag("checkout")

    first = await service.read(flag.id, SCOPE)
    cache.entries[f"flags:byId:{flag.id}:{SCOPE}"]["name"] = "From cache"
    second = await service.read(flag.id, SCOPE)

    assert first.name != "From cache"
    assert second.name == "From cache"


@pytest.mark.asyncio
async def test_read_from_another_scope_is_not_found(service: FeatureFlagService, make_flag, cache) -> None:
    flag = await make_flag("checkout")

    with pytest.raises(FlagNotFoundError):
        await service.read(flag.id, "org:org_1")

    assert cache.entries == {}


@pytest.mark.asyncio
async def test_list_cache_is_evicted_by_writes(service: FeatureFlagService, make_flag) -> None:
    a = await make_flag("a")
    assert (await service.list_flags(SCOPE)).total == 1

    await service.create(FeatureFlagCreate(key="b", website_id="site_1"))
    await service.update(a.id, FeatureFlagUpdate(status=FlagStatus.INACTIVE))

    assert (await service.list_flags(SCOPE)).total == 2
    assert [f.key for f in (await service.list_flags(SCOPE, status=FlagStatus.INACTIVE)).items] == ["a"]


@pytest.mark.asyncio
async def test_activating_cascades_when_dependencies_are_met(
    service: FeatureFlagService, make_flag, reload
) -> None:
    a = await make_flag("a", status=FlagStatus.INACTIVE)
    b = await make_flag("b", status=FlagStatus.INACTIVE, dependencies=["a"])

    await service.update(a.id, FeatureFlagUpdate(status=FlagStatus.ACTIVE))

    assert (await reload(FeatureFlag, b.id)).status == FlagStatus.ACTIVE


@pytest.mark.asyncio
async def test_update_rejects_self_dependency(service: FeatureFlagService, make_flag) -> None:
    a = await make_flag("a")

    with pytest.raises(ValidationException, match="cannot depend on itself"):
        await service.update(a.id, FeatureFlagUpdate(dependencies=["a"]))


@pytest.mark.asyncio
async def test_explicit_null_keeps_not_null_columns(service: FeatureFlagService, make_flag) -> None:
    a = await make_flag("a", rollout_percentage=30)

    updated = await service.update(a.id, FeatureFlagUpdate(rollout_percentage=None, description=None))

    assert updated.rollout_percentage == 30
    assert updated.description is None


@pytest.mark.asyncio
async def test_archive_hides_flag_and_does_not_cascade(
    service: FeatureFlagService, make_flag, reload
) -> None:
    a = await make_flag("a")
    b = await make_flag("b", dependencies=["a"])

    archived = await service.archive(a.id)

    assert archived.status == FlagStatus.ARCHIVED
    assert archived.deleted_at is not None
    assert (await reload(FeatureFlag, b.id)).status == FlagStatus.ACTIVE
    with pytest.raises(FlagNotFoundError):
        await service.get(a.id)


@pytest.mark.asyncio
async def test_update_to_archived_archives(service: FeatureFlagService, make_flag) -> None:
    a = await make_flag("a")

    flag = await service.update(a.id, FeatureFlagUpdate(status=FlagStatus.ARCHIVED))

    assert flag.is_archived
    assert flag.is_deleted
