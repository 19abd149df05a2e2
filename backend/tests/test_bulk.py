from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from app.core.errors import UnsupportedOperationError
from app.services.bulk import AddTags, BulkMutator, SetFavorite, parse_operation
from app.services.query import GalleryQuery, QueryEngine


@pytest.mark.asyncio
async def test_only_owned_live_records_are_modified(catalog, make_photo, owner_id):
    owned = await make_photo(owner_id)
    foreign = await make_photo(uuid4())
    deleted = await make_photo(owner_id, is_deleted=True)

    result = await BulkMutator(catalog).apply(
        [owned.id, foreign.id, deleted.id], {"type": "setFavorite", "is_favorite": True}, owner_id
    )

    assert result.operation == "setFavorite"
    assert result.requested_count == 3
    assert result.modified_count == 1
    assert result.modified_ids == [owned.id]
    assert (await catalog.get_by_id(owned.id)).is_favorite is True
    assert (await catalog.get_by_id(foreign.id)).is_favorite is False
    assert (await catalog.get_by_id(deleted.id)).is_favorite is False


@pytest.mark.asyncio
async def test_add_tags_merges_with_existing(catalog, make_photo, owner_id):
    photo = await make_photo(owner_id, tags=["beach", "family"])

    await BulkMutator(catalog).apply([photo.id], AddTags(tags=["Family", "sunset"]), owner_id)

    assert (await catalog.get_by_id(photo.id)).tags == ["beach", "family", "sunset"]


@pytest.mark.asyncio
async def test_delete_hides_record_from_gallery(catalog, make_photo, owner_id):
    kept = await make_photo(owner_id)
    removed = await make_photo(owner_id)

    result = await BulkMutator(catalog).apply([str(removed.id)], {"type": "delete"}, owner_id)

    assert result.modified_count == 1
    page = await QueryEngine(catalog).list_gallery(GalleryQuery(owner_id=owner_id))
    assert [photo.id for photo in page.items] == [kept.id]
    assert (await catalog.get_by_id(removed.id)).is_deleted is True


@pytest.mark.asyncio
async def test_set_privacy(catalog, make_photo, owner_id):
    photo = await make_photo(owner_id)

    await BulkMutator(catalog).apply([photo.id], {"type": "setPrivacy", "is_private": True}, owner_id)

    assert (await catalog.get_by_id(photo.id)).is_private is True


@pytest.mark.asyncio
async def test_unsupported_operation_is_rejected_before_any_write():
    catalog = MagicMock()

    with pytest.raises(UnsupportedOperationError):
        await BulkMutator(catalog).apply([uuid4()], {"type": "archive"}, uuid4())

    catalog.mutate_owned.assert_not_called()


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "addTags", "tags": []},
        {"type": "addTags", "tags": ["x"]},
        {"type": "setFavorite"},
        {"tags": ["beach"]},
    ],
)
def test_parse_operation_rejects_malformed_payloads(payload):
    with pytest.raises(UnsupportedOperationError):
        parse_operation(payload)


def test_parse_operation_normalizes_tags():
    operation = parse_operation({"type": "addTags", "tags": [" Beach ", "beach", "Sunset"]})

    assert isinstance(operation, AddTags)
    assert operation.tags == ["beach", "sunset"]


@pytest.mark.asyncio
async def test_invalid_and_duplicate_ids_are_skipped(catalog, make_photo, owner_id):
    photo = await make_photo(owner_id)

    result = await BulkMutator(catalog).apply(
        ["not-an-id", str(photo.id), photo.id], SetFavorite(is_favorite=True), owner_id
    )

    assert result.requested_count == 3
    assert result.modified_count == 1


@pytest.mark.asyncio
async def test_modification_refreshes_updated_at(catalog, make_photo, set_fields, owner_id):
    photo = await make_photo(owner_id)
    stale = datetime.now(timezone.utc) - timedelta(days=3)
    await set_fields(photo.id, updated_at=stale)

    await BulkMutator(catalog).apply([photo.id], SetFavorite(is_favorite=False), owner_id)

    updated = (await catalog.get_by_id(photo.id)).updated_at
    assert updated.replace(tzinfo=None) > stale.replace(tzinfo=None) + timedelta(days=2)
