"""Tests for mpintel.web.routes.quotes - review, approval and normalization status."""

from uuid import uuid4


async def _fixed_review_payload(client, quote_id):
    view = (await client.get(f"/quotes/{quote_id}")).json()
    lines = [
        {
            "id": line["id"],
            "raw_description": line["raw_description"],
            "quantity": line["quantity"],
            "unit": line["unit"],
            "unit_price": line["unit_price"],
            "line_total": line["line_total"],
            "line_type": line["line_type"],
        }
        for line in view["line_items"]
    ]
    lines[0]["line_total"] = "50.00"
    return {
        "subtotal": "80.00",
        "tax_amount": "5.60",
        "total_amount": "95.60",
        "line_items": lines,
    }


class TestGetQuote:
    async def test_draft_with_warnings(self, client, review_quote_id):
        response = await client.get(f"/quotes/{review_quote_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["document_status"] == "review_needed"
        assert body["supplier"]["name"] == "Acme Lumber"
        assert [line["raw_description"] for line in body["line_items"]] == [
            "PT 2x4x8",
            "Galvanized joist hanger",
        ]
        assert {w["check"] for w in body["warnings"]} >= {"line_arithmetic"}
        assert body["verified"] is False

    async def test_unknown_quote(self, client):
        response = await client.get(f"/quotes/{uuid4()}")
        assert response.status_code == 404


class TestSaveReview:
    async def test_correction_clears_warnings(self, client, review_quote_id):
        payload = await _fixed_review_payload(client, review_quote_id)

        response = await client.put(
            f"/quotes/{review_quote_id}/review", params={"reviewer": "lee"}, json=payload
        )

        assert response.status_code == 200
        assert response.json()["warnings"] == []

    async def test_reviewer_required(self, client, review_quote_id):
        response = await client.put(f"/quotes/{review_quote_id}/review", json={})
        assert response.status_code == 422

    async def test_foreign_line_rejected(self, client, review_quote_id):
        payload = {"line_items": [{"id": str(uuid4()), "raw_description": "Ghost line"}]}

        response = await client.put(
            f"/quotes/{review_quote_id}/review", params={"reviewer": "lee"}, json=payload
        )

        assert response.status_code == 404


class TestApproveQuote:
    async def test_approve_enqueues_normalization(self, client, dispatcher, review_quote_id):
        response = await client.post(
            f"/quotes/{review_quote_id}/approve", json={"approved_by": "lee"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["quote_id"] == str(review_quote_id)
        assert body["already_verified"] is False
        assert body["normalization_enqueued"] is True
        assert body["verified_at"] is not None
        assert dispatcher.calls("normalize_quote_job") == [(str(review_quote_id),)]

    async def test_approve_twice(self, client, dispatcher, review_quote_id):
        await client.post(f"/quotes/{review_quote_id}/approve", json={"approved_by": "lee"})

        response = await client.post(
            f"/quotes/{review_quote_id}/approve", json={"approved_by": "kim"}
        )

        assert response.status_code == 200
        assert response.json()["already_verified"] is True
        assert len(dispatcher.calls("normalize_quote_job")) == 1

    async def test_approver_required(self, client, review_quote_id):
        response = await client.post(
            f"/quotes/{review_quote_id}/approve", json={"approved_by": ""}
        )
        assert response.status_code == 422

    async def test_review_after_approval_conflicts(self, client, review_quote_id):
        await client.post(f"/quotes/{review_quote_id}/approve", json={"approved_by": "lee"})

        response = await client.put(
            f"/quotes/{review_quote_id}/review",
            params={"reviewer": "lee"},
            json={"notes": "late edit"},
        )

        assert response.status_code == 409


class TestNormalizationStatus:
    async def test_before_approval(self, client, review_quote_id):
        response = await client.get(f"/quotes/{review_quote_id}/normalization")

        assert response.status_code == 200
        body = response.json()
        assert body["verified"] is False
        assert body["complete"] is False

    async def test_after_normalization(self, client, normalized_quote_id):
        response = await client.get(f"/quotes/{normalized_quote_id}/normalization")

        body = response.json()
        assert body["complete"] is True
        assert body["material_lines"] == 2
        assert body["matched"] == 1
        assert body["unmatched"] == 1
