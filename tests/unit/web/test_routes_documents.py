"""Tests for mpintel.web.routes.documents - upload, poll and resubmit."""

from uuid import UUID, uuid4

from mpintel.exceptions import ExtractionError
from mpintel.web.dependencies import get_dispatcher

PDF = ("quote.pdf", b"%PDF-1.4 quote", "application/pdf")


class TestUploadDocument:
    async def test_upload_queues_extraction(self, client, dispatcher, storage):
        response = await client.post(
            "/documents", files={"file": PDF}, data={"uploaded_by": "sam"}
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"
        assert body["org_id"] == "test-org"
        assert body["file_name"] == "quote.pdf"
        assert body["file_size_bytes"] == len(PDF[1])
        assert body["uploaded_by"] == "sam"
        assert body["events"][0]["to_status"] == "pending"
        assert dispatcher.calls("process_document_job") == [(body["id"],)]
        assert list(storage.objects.values()) == [PDF[1]]

    async def test_upload_for_other_org(self, client):
        response = await client.post("/documents?org=acme", files={"file": PDF})

        assert response.status_code == 202
        assert response.json()["org_id"] == "acme"

    async def test_upload_accepted_when_queue_down(self, app, client, failing_dispatcher):
        app.dependency_overrides[get_dispatcher] = lambda: failing_dispatcher

        response = await client.post("/documents", files={"file": PDF})

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"
        assert body["error_message"] == "Dispatch failed: redis unavailable"

        polled = await client.get(f"/documents/{body['id']}")
        assert polled.json()["error_message"] == "Dispatch failed: redis unavailable"

    async def test_upload_requires_file(self, client):
        response = await client.post("/documents", data={"uploaded_by": "sam"})
        assert response.status_code == 422


class TestGetDocument:
    async def test_poll_status(self, client):
        created = (await client.post("/documents", files={"file": PDF})).json()

        response = await client.get(f"/documents/{created['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    async def test_unknown_document(self, client):
        response = await client.get(f"/documents/{uuid4()}")
        assert response.status_code == 404

    async def test_invalid_id(self, client):
        response = await client.get("/documents/not-a-uuid")
        assert response.status_code == 422


class TestResubmitDocument:
    async def test_resubmit_failed_document(
        self, client, controller, fake_extractor, dispatcher
    ):
        created = (await client.post("/documents", files={"file": PDF})).json()
        document_id = created["id"]
        await controller.process_document(
            UUID(document_id), fake_extractor(error=ExtractionError("unreadable scan"))
        )

        response = await client.post(
            f"/documents/{document_id}/resubmit", data={"uploaded_by": "sam"}
        )

        assert response.status_code == 202
        body = response.json()
        assert body["id"] != document_id
        assert body["resubmitted_from_id"] == document_id
        assert body["status"] == "pending"
        assert len(dispatcher.calls("process_document_job")) == 2

    async def test_resubmit_pending_document_conflicts(self, client):
        created = (await client.post("/documents", files={"file": PDF})).json()

        response = await client.post(f"/documents/{created['id']}/resubmit")

        assert response.status_code == 409

    async def test_resubmit_accepted_when_queue_down(
        self, app, client, controller, fake_extractor, failing_dispatcher
    ):
        created = (await client.post("/documents", files={"file": PDF})).json()
        await controller.process_document(
            UUID(created["id"]), fake_extractor(error=ExtractionError("unreadable scan"))
        )
        app.dependency_overrides[get_dispatcher] = lambda: failing_dispatcher

        response = await client.post(f"/documents/{created['id']}/resubmit")

        assert response.status_code == 202
        body = response.json()
        assert body["resubmitted_from_id"] == created["id"]
        assert body["status"] == "pending"
        assert body["error_message"] == "Dispatch failed: redis unavailable"
