"""
Color name mappings: reception name (as written by the supplier) -> display name + hex.
Mappings are loaded explicitly per shop and passed around; there is no process-wide cache.
Lookups ignore case and diacritics (Bleu Marine = bleu marine = BLEU MARINE, Écru = ecru).
"""
import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ivy.models import ColorRule

DEFAULT_HEX = "#808080"
NO_COLOR = "Sans couleur"
COLOR_OPTION_NAMES = ("couleur", "color", "colour")

_PARENTHESES_RE = re.compile(r"\s*\([^)]*\)")


def normalize_color_name(name: str) -> str:
    """Lowercase, strip accents."""
    decomposed = unicodedata.normalize("NFD", name.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def is_color_option(option_name: Optional[str]) -> bool:
    if not option_name:
        return False
    return option_name.lower().strip() in COLOR_OPTION_NAMES


@dataclass(frozen=True)
class ColorMapping:
    reception_name: str
    display_name: Optional[str]
    hex_value: str


class ColorMappings:
    def __init__(self, mappings: Iterable[ColorMapping] = ()):
        self._by_reception: dict[str, ColorMapping] = {}
        self._by_display: dict[str, ColorMapping] = {}
        for m in mappings:
            self._by_reception[normalize_color_name(m.reception_name)] = m
            if m.display_name:
                self._by_display.setdefault(normalize_color_name(m.display_name), m)

    @classmethod
    def load(cls, db: Session, shop_id: str) -> "ColorMappings":
        rules = db.query(ColorRule).filter(ColorRule.shop_id == shop_id).all()
        return cls(
            ColorMapping(r.reception_name, r.display_name, r.hex_value or DEFAULT_HEX)
            for r in rules
        )

    def __len__(self) -> int:
        return len(self._by_reception)

    def find(self, reception_name: str) -> Optional[ColorMapping]:
        if not reception_name:
            return None
        return self._by_reception.get(normalize_color_name(reception_name))

    def transform(self, color: str) -> str:
        """Display name for a reception color; the cleaned input when unmapped."""
        if not color:
            return NO_COLOR
        clean = _PARENTHESES_RE.sub("", color).strip()
        mapping = self.find(clean)
        if mapping and mapping.display_name:
            return mapping.display_name
        return clean

    def reverse_transform(self, display_color: str) -> str:
        """Reception name for a display name; the input when unmapped."""
        if not display_color:
            return ""
        mapping = self._by_display.get(normalize_color_name(display_color))
        return mapping.reception_name if mapping else display_color

    def hex_for(self, color: str) -> str:
        """Hex value by reception name, then by display name."""
        if not color:
            return DEFAULT_HEX
        mapping = self.find(color) or self.find(self.reverse_transform(color))
        return mapping.hex_value if mapping else DEFAULT_HEX
