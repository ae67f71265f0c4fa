"""
Shop registration and metafield configuration API tests
"""
import asyncio

from ivy.models import Shop
from ivy.services import supplier_orders
from ivy.services.shopify_service import client_for_shop
from ivy.services.supplier_orders import NewItem
from ivy.http.controllers.shops import normalize_shop_domain


def test_normalize_shop_domain():
    assert normalize_shop_domain("https://Ma-Boutique.myshopify.com/admin") == "ma-boutique.myshopify.com"
    assert normalize_shop_domain("ma-boutique") == "ma-boutique.myshopify.com"
    assert normalize_shop_domain("boutique.example.com") == "boutique.example.com"


class TestShopsApi:
    def test_token_is_stored_encrypted_and_never_returned(self, client, db_session):
        response = client.post("/api/shops", json={
            "name": "Ma Boutique",
            "shopifyUrl": "https://Ma-Boutique.myshopify.com/",
            "shopifyToken": "shpat_live_token",
            "shopifyLocationId": "777",
        })

        assert response.status_code == 200
        shop = response.json()["shop"]
        assert shop["shopify_url"] == "ma-boutique.myshopify.com"
        assert shop["shopify_location_id"] == "777"
        assert "shopify_token" not in shop

        row = db_session.get(Shop, shop["id"])
        assert row.shopify_token != "shpat_live_token"
        assert client_for_shop(row).headers["X-Shopify-Access-Token"] == "shpat_live_token"

        listed = client.get("/api/shops").json()["shops"]
        assert [s["id"] for s in listed] == [shop["id"]]

    def test_duplicate_domain_is_refused(self, client, shop):
        response = client.post("/api/shops", json={"shopify_url": "ivy-test", "shopify_token": "x"})
        assert response.status_code == 400

    def test_missing_token_is_a_bad_request(self, client, db_session):
        response = client.post("/api/shops", json={"shopifyUrl": "autre-boutique"})
        assert response.status_code == 400

    def test_token_rotation(self, client, db_session, shop):
        response = client.put("/api/shops", json={"id": shop.id, "accessToken": "shpat_rotated"})

        assert response.status_code == 200
        db_session.expire_all()
        assert client_for_shop(db_session.get(Shop, shop.id)).headers["X-Shopify-Access-Token"] == "shpat_rotated"

    def test_update_unknown_shop(self, client, db_session):
        assert client.put("/api/shops", json={"id": "missing", "name": "x"}).status_code == 404


class TestMetafieldsApi:
    def test_crud(self, client, shop):
        created = client.post("/api/settings/metafields", json={
            "shopId": shop.id,
            "namespace": "custom",
            "key": "fabric",
            "displayName": "Tissu",
        })
        assert created.status_code == 200
        config = created.json()["metafield"]
        assert (config["namespace"], config["key"], config["display_name"], config["is_active"]) == (
            "custom", "fabric", "Tissu", True
        )

        # same namespace.key, other case: updates the existing config
        again = client.post("/api/settings/metafields", json={
            "shop_id": shop.id,
            "namespace": "Custom",
            "key": "FABRIC",
            "display_name": "Matière",
        })
        assert again.json()["metafield"]["id"] == config["id"]

        updated = client.put("/api/settings/metafields", json={"id": config["id"], "isActive": False})
        assert updated.json()["metafield"]["is_active"] is False

        listed = client.get("/api/settings/metafields", params={"shopId": shop.id}).json()["metafields"]
        assert [m["display_name"] for m in listed] == ["Matière"]

        deleted = client.delete("/api/settings/metafields", params={"id": config["id"], "shopId": shop.id})
        assert deleted.json() == {"success": True}
        assert client.get("/api/settings/metafields", params={"shopId": shop.id}).json()["metafields"] == []

    def test_renaming_onto_an_existing_key_is_refused(self, client, shop):
        first = client.post("/api/settings/metafields", json={"shopId": shop.id, "namespace": "custom", "key": "fabric"})
        client.post("/api/settings/metafields", json={"shopId": shop.id, "namespace": "custom", "key": "print"})

        response = client.put("/api/settings/metafields", json={"id": first.json()["metafield"]["id"], "key": "print"})

        assert response.status_code == 400

    def test_unknown_shop(self, client, db_session):
        response = client.post("/api/settings/metafields", json={"shopId": "missing", "namespace": "custom", "key": "fabric"})
        assert response.status_code == 404

    def test_missing_shop_id(self, client):
        assert client.get("/api/settings/metafields").status_code == 400

    def test_configured_metafield_is_copied_onto_items(self, client, db_session, shop, variant):
        client.post("/api/settings/metafields", json={
            "shopId": shop.id, "namespace": "custom", "key": "fabric", "displayName": "Tissu",
        })
        seen = []

        class Client:
            async def fetch_variant_metafields(self, variant_ids, configs):
                seen.append([(c.namespace, c.key) for c in configs])
                return {"1000": {"Tissu": "Lin"}}

        order = supplier_orders.create_order(db_session, shop.id)
        inserted = asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id)], client=Client()))

        assert seen == [[("custom", "fabric")]]
        assert inserted[0].metafields == {"Tissu": "Lin"}
