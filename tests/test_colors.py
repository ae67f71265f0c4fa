"""
Color mapping tests - normalization, transforms and the colors settings API
"""
from ivy.models import ColorRule
from ivy.services.colors import (
    DEFAULT_HEX,
    ColorMapping,
    ColorMappings,
    is_color_option,
    normalize_color_name,
)


def _mappings():
    return ColorMappings([
        ColorMapping("Bleu Marine", "Navy", "#1F2A44"),
        ColorMapping("Écru", None, "#F3EFE0"),
    ])


def test_normalize_ignores_case_and_accents():
    assert normalize_color_name("ÉCRU") == normalize_color_name("ecru") == "ecru"


def test_transform_matches_regardless_of_case():
    colors = _mappings()
    for name in ("Bleu Marine", "bleu marine", "BLEU MARINE"):
        assert colors.transform(name) == "Navy"


def test_transform_strips_parentheses_and_keeps_unmapped():
    colors = _mappings()
    assert colors.transform("Bleu marine (foncé)") == "Navy"
    assert colors.transform("Rouge (vif)") == "Rouge"
    assert colors.transform("") == "Sans couleur"


def test_mapping_without_display_name_keeps_clean_name():
    assert _mappings().transform("ecru") == "ecru"


def test_reverse_transform():
    colors = _mappings()
    assert colors.reverse_transform("navy") == "Bleu Marine"
    assert colors.reverse_transform("Vert") == "Vert"


def test_hex_lookup():
    colors = _mappings()
    assert colors.hex_for("ecru") == "#F3EFE0"
    assert colors.hex_for("Navy") == "#1F2A44"
    assert colors.hex_for("Inconnue") == DEFAULT_HEX


def test_is_color_option():
    assert is_color_option("Couleur")
    assert is_color_option(" colour ")
    assert not is_color_option("Taille")
    assert not is_color_option(None)


def test_load_is_scoped_to_shop(db_session, shop):
    db_session.add(ColorRule(shop_id=shop.id, reception_name="Rouge", display_name="Red", hex_value="#FF0000"))
    db_session.commit()
    assert len(ColorMappings.load(db_session, shop.id)) == 1
    assert len(ColorMappings.load(db_session, "other-shop")) == 0


class TestColorsApi:
    def test_crud(self, client, shop):
        created = client.post("/api/settings/colors", json={
            "shopId": shop.id,
            "reception_name": "Bleu Marine",
            "display_name": "Navy",
            "hex_value": "#1f2a44",
        })
        assert created.status_code == 200
        color = created.json()["color"]
        assert color["hex_value"] == "#1F2A44"

        # same reception name, other case: updates the existing rule
        again = client.post("/api/settings/colors", json={
            "shopId": shop.id,
            "receptionName": "bleu marine",
            "hexValue": "#000080",
        })
        assert again.json()["color"]["id"] == color["id"]

        listed = client.get("/api/settings/colors", params={"shopId": shop.id}).json()["colors"]
        assert [c["hex_value"] for c in listed] == ["#000080"]

        updated = client.put("/api/settings/colors", json={"id": color["id"], "displayName": "Marine"})
        assert updated.json()["color"]["display_name"] == "Marine"

        deleted = client.delete("/api/settings/colors", params={"id": color["id"], "shopId": shop.id})
        assert deleted.json() == {"success": True}
        assert client.get("/api/settings/colors", params={"shopId": shop.id}).json()["colors"] == []

    def test_invalid_hex_is_a_bad_request(self, client, shop):
        response = client.post("/api/settings/colors", json={
            "shopId": shop.id,
            "reception_name": "Rouge",
            "hex_value": "red",
        })
        assert response.status_code == 400
