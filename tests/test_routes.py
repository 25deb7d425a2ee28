"""Tests for Flask route endpoints."""

import io
import json
import time
from typing import Any
from unittest.mock import MagicMock, patch

from conftest import FakeObjectStore, make_jpeg
from flask.testing import FlaskClient

from job_photos.services.metadata_service import MetadataRecorder, MetadataStore
from job_photos.services.models import BookingContext, PhotoCategory

BOOKING_FORM = {
    "customer_id": "77",
    "cleaner_id": "5",
    "postcode": "sw1a 1aa",
    "booking_date": "2026-03-14",
}


def jpeg_field(*names: str) -> list[tuple[io.BytesIO, str, str]]:
    return [(io.BytesIO(make_jpeg()), name, "image/jpeg") for name in names]


def wait_for_job(client: FlaskClient, job_id: str, timeout: float = 10.0) -> dict[str, Any]:
    """Poll the status endpoint until the job settles."""
    deadline = time.monotonic() + timeout
    while True:
        data = json.loads(client.get(f"/api/photos/upload/status/{job_id}").data)
        if data["status"] in ("completed", "failed") or time.monotonic() > deadline:
            return data
        time.sleep(0.05)


class TestMainRoutes:
    """Tests for service info routes."""

    def test_health(self, client: FlaskClient) -> None:
        """Test that health reports status and bucket configuration."""
        response = client.get("/health")
        assert response.status_code == 200

        data = json.loads(response.data)
        assert data["status"] == "ok"
        assert data["bucket_configured"] is True
        assert "version" in data

    def test_index(self, client: FlaskClient) -> None:
        """Test that the root path answers like health."""
        assert client.get("/").status_code == 200


class TestUploadAPI:
    """Tests for upload API endpoints."""

    def test_upload_and_poll(
        self, client: FlaskClient, fake_store: FakeObjectStore, metadata_store: MetadataStore
    ) -> None:
        """Test a before/after upload through to completion."""
        response = client.post(
            "/api/photos/upload/1042",
            data={
                **BOOKING_FORM,
                "before": jpeg_field("b1.jpg", "b2.jpg"),
                "after": jpeg_field("a1.jpg"),
            },
            content_type="multipart/form-data",
        )
        assert response.status_code == 202

        data = json.loads(response.data)
        assert data["total_count"] == 3
        assert data["concurrency_limit"] == 3

        status = wait_for_job(client, data["job_id"])
        assert status["status"] == "completed"
        assert status["result"]["uploaded_count"] == 3
        assert len(fake_store.objects) == 3
        assert len(metadata_store.select_by_booking(1042)) == 3

    def test_mobile_device_class(self, client: FlaskClient) -> None:
        """Test that a mobile client gets the smaller worker budget."""
        response = client.post(
            "/api/photos/upload/1042",
            data={**BOOKING_FORM, "device_class": "mobile", "before": jpeg_field("b.jpg")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 202

        data = json.loads(response.data)
        assert data["concurrency_limit"] == 2
        wait_for_job(client, data["job_id"])

    def test_skipped_files_reported(self, client: FlaskClient) -> None:
        """Test that oversize additional files are reported as skipped."""
        big = (io.BytesIO(b"\x00" * (10 * 1024 * 1024 + 1)), "video.mp4", "video/mp4")
        response = client.post(
            "/api/photos/upload/1042",
            data={
                **BOOKING_FORM,
                "annotation": "Scratched floor",
                "additional": [big, (io.BytesIO(b"%PDF"), "report.pdf", "application/pdf")],
            },
            content_type="multipart/form-data",
        )
        assert response.status_code == 202

        data = json.loads(response.data)
        assert data["total_count"] == 1
        assert data["skipped"] == [{"filename": "video.mp4", "reason": "exceeds size limit"}]
        wait_for_job(client, data["job_id"])

    def test_no_files(self, client: FlaskClient) -> None:
        """Test upload with no files."""
        response = client.post(
            "/api/photos/upload/1042", data=BOOKING_FORM, content_type="multipart/form-data"
        )
        assert response.status_code == 400
        assert json.loads(response.data)["error"] == "No files provided"

    def test_no_compatible_files(self, client: FlaskClient) -> None:
        """Test that only unsupported photo files are rejected."""
        response = client.post(
            "/api/photos/upload/1042",
            data={**BOOKING_FORM, "before": [(io.BytesIO(b"hi"), "notes.txt", "text/plain")]},
            content_type="multipart/form-data",
        )
        assert response.status_code == 400
        assert json.loads(response.data)["error"] == "No compatible files"

    def test_missing_booking_field(self, client: FlaskClient) -> None:
        """Test that a missing context field is a 400."""
        form = {k: v for k, v in BOOKING_FORM.items() if k != "postcode"}
        response = client.post(
            "/api/photos/upload/1042",
            data={**form, "before": jpeg_field("b.jpg")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 400
        assert "postcode" in json.loads(response.data)["error"]

    def test_invalid_device_class(self, client: FlaskClient) -> None:
        """Test that an unknown device class is a 400."""
        response = client.post(
            "/api/photos/upload/1042",
            data={**BOOKING_FORM, "device_class": "tablet", "before": jpeg_field("b.jpg")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 400

    def test_status_not_found(self, client: FlaskClient) -> None:
        """Test getting status of nonexistent job."""
        response = client.get("/api/photos/upload/status/nonexistent-job")
        assert response.status_code == 404

    def test_active_jobs(self, client: FlaskClient) -> None:
        """Test listing active jobs."""
        response = client.get("/api/photos/upload/active")
        assert response.status_code == 200
        assert json.loads(response.data) == {"jobs": []}

    def test_progress_stream_for_finished_job(self, client: FlaskClient) -> None:
        """Test that SSE for a settled job sends one snapshot and ends."""
        response = client.post(
            "/api/photos/upload/1042",
            data={**BOOKING_FORM, "before": jpeg_field("b.jpg")},
            content_type="multipart/form-data",
        )
        job_id = json.loads(response.data)["job_id"]
        wait_for_job(client, job_id)

        stream = client.get(f"/api/photos/upload/progress/{job_id}")

        assert stream.mimetype == "text/event-stream"
        payload = json.loads(stream.data.decode().strip().removeprefix("data: "))
        assert payload["status"] == "completed"
        assert payload["uploaded_count"] == 1


class TestPhotosAPI:
    """Tests for photo browsing, deletion and orphan endpoints."""

    def _record(self, metadata_store: MetadataStore, context: BookingContext, key: str) -> int:
        return MetadataRecorder(metadata_store).record(context, key, PhotoCategory.BEFORE)

    def test_list_photos(
        self,
        client: FlaskClient,
        metadata_store: MetadataStore,
        booking_context: BookingContext,
    ) -> None:
        """Test listing a booking's photos."""
        self._record(metadata_store, booking_context, "k/before/1_0_a.jpg")

        data = json.loads(client.get("/api/photos/1042").data)

        assert data["total"] == 1
        assert data["photos"]["before"][0]["file_path"] == "k/before/1_0_a.jpg"

    def test_signed_url(
        self,
        client: FlaskClient,
        metadata_store: MetadataStore,
        booking_context: BookingContext,
    ) -> None:
        """Test signed URL lookup with a custom ttl."""
        record_id = self._record(metadata_store, booking_context, "k/before/1_0_a.jpg")

        response = client.get(f"/api/photos/record/{record_id}/url?ttl=60")

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["expires_in"] == 60
        assert data["url"].endswith("?ttl=60")
        assert client.get("/api/photos/record/999/url").status_code == 404

    def test_delete_photo(
        self,
        client: FlaskClient,
        fake_store: FakeObjectStore,
        metadata_store: MetadataStore,
        booking_context: BookingContext,
    ) -> None:
        """Test deleting a recorded photo."""
        record_id = self._record(metadata_store, booking_context, "k/before/1_0_a.jpg")

        response = client.delete(f"/api/photos/record/{record_id}")

        assert response.status_code == 200
        assert json.loads(response.data)["deleted"]["id"] == record_id
        assert fake_store.deleted == ["k/before/1_0_a.jpg"]
        assert client.delete(f"/api/photos/record/{record_id}").status_code == 404

    def test_delete_photos_bulk(
        self,
        client: FlaskClient,
        fake_store: FakeObjectStore,
        metadata_store: MetadataStore,
        booking_context: BookingContext,
    ) -> None:
        """Test bulk deletion with a mix of known and unknown ids."""
        first = self._record(metadata_store, booking_context, "k/before/1_0_a.jpg")
        second = self._record(metadata_store, booking_context, "k/before/1_1_b.jpg")

        response = client.delete(
            "/api/photos/records",
            data=json.dumps({"record_ids": [first, second, 999]}),
            content_type="application/json",
        )

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["results"] == [
            {"record_id": first, "outcome": "deleted"},
            {"record_id": second, "outcome": "deleted"},
            {"record_id": 999, "outcome": "not_found"},
        ]
        assert (data["deleted_count"], data["failed_count"]) == (2, 1)
        assert data["success"] is False
        assert fake_store.delete_many_calls == [["k/before/1_0_a.jpg", "k/before/1_1_b.jpg"]]
        assert metadata_store.select_by_booking(1042) == []

    def test_delete_photos_bad_body(self, client: FlaskClient) -> None:
        """Test that the id list is validated."""
        for body in ({}, {"record_ids": []}, {"record_ids": ["1"]}, {"record_ids": 3}):
            response = client.delete(
                "/api/photos/records", data=json.dumps(body), content_type="application/json"
            )
            assert response.status_code == 400
        assert client.delete("/api/photos/records").status_code == 400

    def test_orphans(self, client: FlaskClient, fake_store: FakeObjectStore) -> None:
        """Test listing and deleting storage-only files."""
        key = "1042_SW1A1AA_2026-03-14_77/additional/1_0_leftover.pdf"
        fake_store.put(key, b"%PDF", "application/pdf")

        listing = client.get("/api/photos/1042/orphans", query_string=BOOKING_FORM)
        assert listing.status_code == 200
        assert [o["file_path"] for o in json.loads(listing.data)["orphans"]] == [key]

        response = client.delete(
            "/api/photos/1042/orphans",
            data=json.dumps({**BOOKING_FORM, "file_path": key}),
            content_type="application/json",
        )
        assert response.status_code == 200
        assert key not in fake_store.objects

    def test_orphans_requires_context(self, client: FlaskClient) -> None:
        """Test that listing orphans without the booking context is a 400."""
        response = client.get("/api/photos/1042/orphans")
        assert response.status_code == 400

    def test_delete_non_orphan(self, client: FlaskClient) -> None:
        """Test that arbitrary keys cannot be deleted through the orphan endpoint."""
        response = client.delete(
            "/api/photos/1042/orphans",
            data=json.dumps({**BOOKING_FORM, "file_path": "someone/else.jpg"}),
            content_type="application/json",
        )
        assert response.status_code == 404


class TestSettingsAPI:
    """Tests for settings API endpoints."""

    def test_get_settings(self, client: FlaskClient) -> None:
        """Test getting current settings."""
        data = json.loads(client.get("/api/settings").data)
        assert data["s3_bucket"] == "test-bucket"
        assert data["device_class"] == "desktop"

    def test_update_settings(self, client: FlaskClient) -> None:
        """Test updating settings."""
        response = client.put(
            "/api/settings",
            data=json.dumps({"s3_bucket": "new-bucket", "mobile_concurrency": "1"}),
            content_type="application/json",
        )
        assert response.status_code == 200

        data = json.loads(response.data)
        assert data["s3_bucket"] == "new-bucket"
        assert data["mobile_concurrency"] == 1

    def test_update_settings_invalid_key(self, client: FlaskClient) -> None:
        """Test that invalid settings keys are ignored."""
        response = client.put(
            "/api/settings",
            data=json.dumps({"invalid_key": "value"}),
            content_type="application/json",
        )
        assert response.status_code == 400

    def test_update_settings_bad_values(self, client: FlaskClient) -> None:
        """Test validation of device class and integer settings."""
        for body in ({"device_class": "watch"}, {"desktop_concurrency": 0},
                     {"compression_quality": "high"}):
            response = client.put(
                "/api/settings", data=json.dumps(body), content_type="application/json"
            )
            assert response.status_code == 400

    def test_update_settings_no_json(self, client: FlaskClient) -> None:
        """Test updating settings without JSON body."""
        response = client.put("/api/settings", data="not json")
        assert response.status_code == 400

    @patch("job_photos.services.s3_service.get_available_profiles")
    def test_get_profiles(self, mock_profiles: MagicMock, client: FlaskClient) -> None:
        """Test getting AWS profiles."""
        mock_profiles.return_value = ["default", "cleaning"]

        data = json.loads(client.get("/api/settings/profiles").data)
        assert data["profiles"] == ["default", "cleaning"]

    @patch("job_photos.services.s3_service.validate_bucket_access")
    @patch("job_photos.services.s3_service.create_s3_client")
    def test_validate_connection(
        self, mock_client: MagicMock, mock_validate: MagicMock, client: FlaskClient
    ) -> None:
        """Test validating S3 connection."""
        mock_validate.return_value = {"success": True, "bucket": "test-bucket", "error": None}

        response = client.post(
            "/api/settings/validate",
            data=json.dumps({"s3_bucket": "test-bucket"}),
            content_type="application/json",
        )

        assert response.status_code == 200
        assert json.loads(response.data)["success"] is True


class TestLogsAPI:
    """Tests for logs API endpoints."""

    def test_entries_include_startup(self, client: FlaskClient) -> None:
        """Test that the startup event is queryable."""
        data = json.loads(client.get("/api/logs/entries?category=app").data)
        assert any(e["event"] == "app_started" for e in data["entries"])

    def test_files_and_stats(self, client: FlaskClient) -> None:
        """Test the file listing and stats endpoints."""
        assert client.get("/api/logs/files").status_code == 200
        stats = json.loads(client.get("/api/logs/stats").data)
        assert stats["total_entries"] >= 1
