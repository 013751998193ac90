import io

import pytest
from PIL import Image

from conftest import add_user, run, seed_book
from memoir.blob_store import BlobStore
from memoir.data_access import RowStore
from memoir.errors import AuthorizationError, BlobStoreError
from memoir.models import StoryImage
from memoir.schemas import StoryImageCreate
from memoir.services.story_images import create_story_image, make_thumbnail


def _png(size=(800, 600)):
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 120, 40)).save(buf, format="PNG")
    return buf.getvalue()


def test_image_without_owner_is_rejected_before_any_write(blobs):
    with pytest.raises(ValueError):
        StoryImageCreate(file_name="x.jpg")
    assert not (blobs.root / "story_images").exists()


def test_thumbnail_fits_box():
    thumb, w, h = make_thumbnail(_png())
    assert (w, h) == (800, 600)
    with Image.open(io.BytesIO(thumb)) as img:
        assert img.format == "JPEG"
        assert max(img.size) <= 320


def test_not_an_image():
    with pytest.raises(ValueError):
        make_thumbnail(b"definitely not pixels")


def test_create_story_image(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            img = await create_story_image(
                RowStore(db), blobs, owner,
                StoryImageCreate(story_id=seeded["story_id"], file_name="porch.png", mime_type="image/png",
                                 caption="The porch"),
                _png(),
            )
        return img

    img = run(scenario())
    assert img.id is not None
    assert img.storage_path.endswith(".png")
    assert img.thumbnail_path.startswith(f"{img.user_id}/thumbs/")
    assert blobs.exists("story_images", img.storage_path)
    assert blobs.exists("story_images", img.thumbnail_path)
    assert (img.width, img.height) == (800, 600)


def test_cannot_attach_to_someone_elses_story(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        other = await add_user(session_maker, email="other@example.com")
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            rows = RowStore(db)
            with pytest.raises(AuthorizationError):
                await create_story_image(rows, blobs, other,
                                         StoryImageCreate(chapter_id=seeded["chapter_id"], file_name="a.jpg"),
                                         _png())
            return await rows.select(StoryImage)

    images = run(scenario())
    assert len(images) == 2  # only the seeded ones


class ThumbsOfflineStore(BlobStore):
    def upload(self, bucket, path, data, *, content_type=None):
        if "/thumbs/" in path:
            raise BlobStoreError("thumbnail write failed")
        return super().upload(bucket, path, data, content_type=content_type)


def test_failed_thumbnail_upload_removes_original(session_maker, tmp_path):
    store = ThumbsOfflineStore(tmp_path / "blobs", "test-signing-key")

    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, store, owner)
        async with session_maker() as db:
            with pytest.raises(BlobStoreError):
                await create_story_image(
                    RowStore(db), store, owner,
                    StoryImageCreate(story_id=seeded["story_id"], file_name="porch.png", mime_type="image/png"),
                    _png(),
                )
        async with session_maker() as db:
            return owner, seeded, await RowStore(db).select(StoryImage)

    owner, seeded, images = run(scenario())
    assert len(images) == 2  # only the seeded ones
    user_dir = store.root / "story_images" / str(owner)
    leftovers = sorted(p.name for p in user_dir.iterdir() if p.is_file())
    assert leftovers == sorted(p.split("/")[-1] for p in seeded["image_paths"])
