from datetime import datetime, timezone
from io import BytesIO
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.jobs.queue import ProcessingQueue
from app.models.photo import Photo
from app.services.catalog import CatalogStore
from app.services.ingestion import IngestionOrchestrator
from app.services.metadata import aspect_ratio_for, orientation_for
from app.services.processing import ProcessingStateMachine
from app.services.storage import LocalStorageGateway
from app.services.validator import IncomingFile


def make_image_bytes(width=64, height=48, fmt="JPEG", mode="RGB", color=(200, 120, 40), **save_kwargs) -> bytes:
    if mode in {"L", "1"}:
        color = color[0]
    elif mode == "RGBA":
        color = (*color, 128)
    buffer = BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


@pytest.fixture
def image_bytes():
    """Create image bytes of the requested size and format."""
    return make_image_bytes


@pytest_asyncio.fixture
async def engine():
    """Create an in-memory catalog database with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def catalog(engine):
    return CatalogStore(async_sessionmaker(engine, expire_on_commit=False))


@pytest.fixture
def storage(tmp_path):
    """Create a filesystem storage gateway rooted in a temp dir."""
    return LocalStorageGateway(root=tmp_path / "storage", base_url="http://testserver", url_secret="test-secret")


@pytest.fixture
def owner_id():
    return uuid4()


@pytest.fixture
def make_photo(catalog):
    """Create catalog records directly, bypassing ingestion."""

    async def _make_photo(
        owner_id,
        filename="photo.jpg",
        width=4000,
        height=3000,
        size=1_000_000,
        tags=(),
        notes=None,
        uploaded_at=None,
        **overrides,
    ) -> Photo:
        photo_id = uuid4()
        photo = Photo(
            id=photo_id,
            owner_id=owner_id,
            original_filename=filename,
            sanitized_filename=filename,
            file_size_bytes=size,
            mime_type="image/jpeg",
            storage_provider="local",
            storage_container="photos",
            storage_paths={"original": f"photos/{owner_id}/{photo_id}.jpg"},
            storage_urls={"original": f"http://testserver/files/photos/{owner_id}/{photo_id}.jpg"},
            width=width,
            height=height,
            orientation=orientation_for(width, height),
            aspect_ratio=aspect_ratio_for(width, height),
            dpi=72,
            color_space="sRGB",
            has_transparency=False,
            user_notes=notes,
            uploaded_at=uploaded_at or datetime.now(timezone.utc),
            **overrides,
        )
        return await catalog.create(photo, tags)

    return _make_photo


@pytest.fixture
def ingested_photo(catalog, storage, owner_id):
    """Run a generated JPEG through ingestion so the original is really stored."""

    async def _ingested_photo(filename="beach.jpg", width=640, height=480) -> Photo:
        state_machine = ProcessingStateMachine(catalog, ProcessingQueue(None))
        orchestrator = IngestionOrchestrator(catalog, storage, state_machine, container="photos")
        outcome = await orchestrator.ingest_batch(
            [IncomingFile(filename, "image/jpeg", make_image_bytes(width, height))], owner_id
        )
        assert outcome.success_count == 1
        return outcome.photos[0]

    return _ingested_photo


@pytest.fixture
def set_fields(catalog):
    """Write columns directly, for arranging records in a given state."""

    async def _set_fields(photo_id, **values) -> None:
        async with catalog.session() as session:
            await session.execute(update(Photo).where(Photo.id == photo_id).values(**values))
            await session.commit()

    return _set_fields


@pytest_asyncio.fixture
async def api_client(catalog, storage, owner_id):
    """Create an HTTP client bound to the app with test handles on app.state."""
    from app.core.rate_limit import limiter
    from app.core.security import require_owner_id
    from app.main import app

    app.state.catalog = catalog
    app.state.storage = storage
    app.state.queue = ProcessingQueue(None)
    app.dependency_overrides[require_owner_id] = lambda: owner_id
    limiter.enabled = False

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()
    limiter.enabled = True
