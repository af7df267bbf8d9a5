import pytest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from thumbnail_server.image_service.models import NewImage


def new_image(suffix, tags=()):
    return NewImage(
        original_filename=f"{suffix}.png",
        content_type="image/png",
        width=10,
        height=20,
        thumb_width=5,
        thumb_height=10,
        thumb_content_type="image/png",
        size_bytes=123,
        tags=list(tags),
        original_blob_ref=f"{suffix:0>31}o",
        thumb_blob_ref=f"{suffix:0>31}t",
    )


def test_insert_and_get(metadata_store):
    record = metadata_store.insert_record(new_image("1", ["a", "b"]))
    assert record.id is not None
    assert record.created_at.tzinfo is not None
    assert metadata_store.get_record(record.id) == record


def test_get_unknown_id(metadata_store):
    assert metadata_store.get_record(999) is None


def test_insert_is_all_or_nothing(metadata_store):
    # a duplicate tag violates the primary key after the image row is staged
    with pytest.raises(SQLAlchemyError):
        metadata_store.insert_record(new_image("1", ["dup", "dup"]))
    assert metadata_store.list_records() == []


def test_duplicate_blob_ref_rejected(metadata_store):
    metadata_store.insert_record(new_image("1"))
    with pytest.raises(IntegrityError):
        metadata_store.insert_record(new_image("1"))
    assert len(metadata_store.list_records()) == 1


def test_search_and_list(metadata_store):
    a = metadata_store.insert_record(new_image("1", ["sun"]))
    b = metadata_store.insert_record(new_image("2", ["sun", "sea"]))
    metadata_store.insert_record(new_image("3", ["sea"]))

    assert [r.id for r in metadata_store.search_by_tag("sun")] == [a.id, b.id]
    assert len(metadata_store.list_records()) == 3
    assert metadata_store.search_by_tag("snow") == []


def test_referenced_blob_refs(metadata_store):
    record = metadata_store.insert_record(new_image("7"))
    assert metadata_store.referenced_blob_refs() == {record.original_blob_ref, record.thumb_blob_ref}


@pytest.mark.parametrize("image_id", [0, -1, 2**63, 10**23])
def test_get_out_of_range_id(metadata_store, image_id):
    assert metadata_store.get_record(image_id) is None
