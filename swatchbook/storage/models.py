# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Data models for the curation storage layer.

Lists and product entries stay plain JSON-compatible dicts since they
carry opaque catalog payloads. The records below cover the structured
parts: swatches, image blobs and storage estimates.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union, Dict, Any


@dataclass(frozen=True)
class HSLColor:
    """A color in HSL space.

    Attributes:
        hue: Hue in degrees, 0-360.
        saturation: Saturation percentage, 0-100.
        lightness: Lightness percentage, 0-100 (100 means unchanged
            brightness when used as a recolor filter).
    """
    hue: float
    saturation: float
    lightness: float

    @classmethod
    def coerce(cls, value: Union['HSLColor', Dict[str, Any], Tuple[float, float, float]]) -> 'HSLColor':
        """Build an HSLColor from a dict, a 3-tuple or an HSLColor.

        Raises:
            ValueError: If the value cannot be interpreted as a color.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            try:
                return cls(value['hue'], value['saturation'], value['lightness'])
            except KeyError as e:
                raise ValueError(f"Color is missing component {e}") from None
        if isinstance(value, (tuple, list)) and len(value) == 3:
            return cls(*value)
        raise ValueError(f"Cannot interpret {value!r} as an HSL color")

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.hue, self.saturation, self.lightness)

    def to_dict(self) -> Dict[str, float]:
        return {'hue': self.hue, 'saturation': self.saturation, 'lightness': self.lightness}


@dataclass
class SwatchRecord:
    """A saved color attached to one (list, product, variant) combination."""
    list_name: str
    product_id: str
    variant_index: int
    hue: float
    saturation: float
    lightness: float
    timestamp: Optional[str] = None
    id: Optional[int] = None

    @property
    def color(self) -> HSLColor:
        return HSLColor(self.hue, self.saturation, self.lightness)


@dataclass
class ImageBlob:
    """An image payload keyed by a caller-supplied surrogate id.

    ``data`` is None when a lookup missed.
    """
    id: str
    data: Optional[str] = None


@dataclass(frozen=True)
class StorageEstimate:
    """Advisory storage usage figures, in bytes."""
    quota: int
    usage: int
    available: int


@dataclass(frozen=True)
class CascadeResult:
    """Outcome of the swatch cascade run before a variant is spliced out.

    Attributes:
        deleted_ok: Swatches of the removed variant were deleted.
        renumbered_ok: Swatches of later variants were shifted down.
    """
    deleted_ok: bool
    renumbered_ok: bool

    @property
    def ok(self) -> bool:
        return self.deleted_ok and self.renumbered_ok


class AddResult(Enum):
    """Outcome of adding a product variant to a list."""
    ADDED_PRODUCT = 'added_product'
    ADDED_VARIANT = 'added_variant'
    DUPLICATE = 'duplicate'
    NO_SUCH_LIST = 'no_such_list'
