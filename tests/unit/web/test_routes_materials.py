"""Tests for mpintel.web.routes.materials - unmatched lines and manual mapping."""

from uuid import uuid4


class TestUnmatchedLines:
    async def test_lists_unmatched(self, client, normalized_quote_id):
        response = await client.get("/materials/unmatched")

        assert response.status_code == 200
        [line] = response.json()
        assert line["raw_description"] == "Galvanized joist hanger"
        assert line["quote_id"] == str(normalized_quote_id)

    async def test_limit_bounds(self, client):
        response = await client.get("/materials/unmatched", params={"limit": 501})
        assert response.status_code == 422


class TestAssignMaterial:
    async def test_assign(self, client, normalized_quote_id, catalog):
        [line] = (await client.get("/materials/unmatched")).json()
        material_id = str(catalog["deck_screws"].id)

        response = await client.post(
            f"/line-items/{line['line_item_id']}/material",
            json={"material_id": material_id, "assigned_by": "maintainer"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "line_item_id": line["line_item_id"],
            "material_id": material_id,
            "match_confidence": 1.0,
        }
        assert (await client.get("/materials/unmatched")).json() == []

    async def test_unknown_material(self, client, normalized_quote_id):
        [line] = (await client.get("/materials/unmatched")).json()

        response = await client.post(
            f"/line-items/{line['line_item_id']}/material",
            json={"material_id": str(uuid4()), "assigned_by": "maintainer"},
        )

        assert response.status_code == 404

    async def test_unknown_line(self, client, catalog):
        response = await client.post(
            f"/line-items/{uuid4()}/material",
            json={"material_id": str(catalog["deck_screws"].id), "assigned_by": "maintainer"},
        )

        assert response.status_code == 404
