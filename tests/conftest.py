"""Pytest configuration and fixtures for the job_photos tests."""

import io
import os
import threading
import time
from collections.abc import Generator, Sequence
from datetime import date
from pathlib import Path

import pytest
from flask import Flask
from flask.testing import FlaskClient
from PIL import Image

from job_photos import config, create_app
from job_photos.config import PipelineConfig, get_settings
from job_photos.services import upload_manager
from job_photos.services.errors import UploadError
from job_photos.services.metadata_service import MetadataStore
from job_photos.services.models import BookingContext, SelectedFile
from job_photos.services.s3_service import ObjectInfo
from job_photos.services.upload_manager import PhotoUploadManager


class FakeObjectStore:
    """In-memory object store that can fail or slow down selected uploads."""

    def __init__(self, delay: float = 0.0, fail_names: set[str] | None = None) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.put_calls: list[str] = []
        self.deleted: list[str] = []
        self.delete_many_calls: list[list[str]] = []
        self.undeletable: set[str] = set()
        self.delay = delay
        self.fail_names = fail_names or set()
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str, upsert: bool = True) -> None:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.put_calls.append(key)
        try:
            if self.delay:
                time.sleep(self.delay)
            if any(key.endswith(f"_{name}") for name in self.fail_names):
                raise UploadError(key, "simulated store error")
            with self._lock:
                self.objects[key] = (data, content_type)
        finally:
            with self._lock:
                self.in_flight -= 1

    def list(self, prefix: str) -> list[ObjectInfo]:
        with self._lock:
            return [
                ObjectInfo(key=key, size=len(data))
                for key, (data, _ctype) in sorted(self.objects.items())
                if key.startswith(prefix)
            ]

    def get_signed_read_url(self, key: str, ttl: int = 3600) -> str:
        return f"https://signed.example/{key}?ttl={ttl}"

    def delete(self, key: str) -> None:
        with self._lock:
            self.objects.pop(key, None)
            self.deleted.append(key)

    def delete_many(self, keys: Sequence[str]) -> dict[str, str]:
        errors: dict[str, str] = {}
        with self._lock:
            self.delete_many_calls.append(list(keys))
            for key in keys:
                if key in self.undeletable:
                    errors[key] = "AccessDenied"
                    continue
                self.objects.pop(key, None)
                self.deleted.append(key)
        return errors


def make_jpeg(width: int = 64, height: int = 48, color: str = "red") -> bytes:
    """Small valid JPEG."""
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG")
    return buf.getvalue()


def make_noise_png(width: int = 600, height: int = 400) -> bytes:
    """PNG of random pixels, large enough to cross the compression threshold."""
    im = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    buf = io.BytesIO()
    im.save(buf, format="PNG")
    return buf.getvalue()


def photo(name: str, content: bytes | None = None, content_type: str = "image/jpeg") -> SelectedFile:
    return SelectedFile(filename=name, content=content or make_jpeg(), content_type=content_type)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Point settings, logs and the metadata DB at a temporary directory."""
    monkeypatch.setattr(config, "SETTINGS_FILE", tmp_path / "settings.json")
    settings = get_settings()
    monkeypatch.setattr(
        settings,
        "_settings",
        {
            **settings.all(),
            "s3_bucket": "test-bucket",
            "log_directory": str(tmp_path / "logs"),
            "metadata_db_path": str(tmp_path / "photos.db"),
            "device_class": "desktop",
        },
    )
    monkeypatch.setattr(upload_manager, "_upload_manager", None)
    yield


@pytest.fixture
def booking_context() -> BookingContext:
    return BookingContext(
        booking_id=1042,
        customer_id=77,
        cleaner_id=5,
        postcode="sw1a 1aa",
        booking_date=date(2026, 3, 14),
    )


@pytest.fixture
def fake_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def metadata_store(tmp_path: Path) -> Generator[MetadataStore, None, None]:
    store = MetadataStore(tmp_path / "metadata.db")
    yield store
    store.close()


@pytest.fixture
def desktop_config() -> PipelineConfig:
    return PipelineConfig(device_class="desktop")


@pytest.fixture
def mobile_config() -> PipelineConfig:
    return PipelineConfig(device_class="mobile")


@pytest.fixture
def manager(fake_store: FakeObjectStore, metadata_store: MetadataStore) -> PhotoUploadManager:
    return PhotoUploadManager(store=fake_store, metadata=metadata_store)  # type: ignore[arg-type]


@pytest.fixture
def app(manager: PhotoUploadManager, monkeypatch: pytest.MonkeyPatch) -> Flask:
    """Create application for testing, wired to the in-memory stores."""
    monkeypatch.setattr(upload_manager, "_upload_manager", manager)
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()
