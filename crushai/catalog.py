"""
Purchasable items and bundles.

The catalog is static: it is loaded once at startup, validated, and then only
read. Item ids end up inside the on-chain memo (``<app>:<itemId>``), so they are
restricted to characters that cannot collide with the memo separator.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from crushai.errors import ConfigError

logger = logging.getLogger(__name__)

ITEM_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class Item:
    id: str
    title: str
    price: int
    preview: str
    file: str
    free_if_hold: Optional[int] = None

    def to_dict(self) -> dict:
        data = {"id": self.id, "title": self.title, "price": self.price, "preview": self.preview}
        if self.free_if_hold is not None:
            data["freeIfHold"] = self.free_if_hold
        return data


@dataclass(frozen=True)
class Bundle:
    id: str
    title: str
    price: int
    children: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title, "price": self.price, "children": list(self.children)}


@dataclass(frozen=True)
class Purchasable:
    """What a caller is buying, with bundles already expanded."""

    id: str
    title: str
    price: int
    item_ids: Tuple[str, ...]
    is_bundle: bool = False


DEFAULT_ITEMS: Tuple[Item, ...] = (
    Item("vip-gallery-01-1", "VIP Photo 01", 250, "/xenia/nsfw/nsfw-01-blur.png", "vip-01.png", 2000),
    Item("vip-gallery-01-2", "VIP Photo 02", 300, "/xenia/nsfw/nsfw-02-blur.png", "vip-02.png", 3000),
    Item("vip-gallery-01-3", "VIP Photo 03", 400, "/xenia/nsfw/nsfw-03-blur.png", "vip-03.png", 5000),
    Item("pp-02-1", "Photo A", 500, "/xenia/pp/pp-01-blur.png", "pp-01.png"),
    Item("pp-02-2", "Photo B", 750, "/xenia/pp/pp-02-blur.png", "pp-02.png", 3500),
    Item("pp-02-3", "Photo C", 1000, "/xenia/pp/pp-03-blur.png", "pp-03.png"),
)

DEFAULT_BUNDLES: Tuple[Bundle, ...] = (
    Bundle(
        "bundle-vip-01",
        "VIP Gallery 01 - Complete Bundle",
        600,
        ("vip-gallery-01-1", "vip-gallery-01-2", "vip-gallery-01-3"),
    ),
)


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and value == value


def _invalid(message: str) -> ConfigError:
    return ConfigError("CATALOG", f"invalid catalog: {message}")


class Catalog:
    """Validated, read-only lookup over items and bundles."""

    def __init__(self, items: Iterable[Item] = DEFAULT_ITEMS, bundles: Iterable[Bundle] = DEFAULT_BUNDLES):
        self._items: Dict[str, Item] = {}
        self._bundles: Dict[str, Bundle] = {}
        for item in items:
            self._validate_item(item)
            self._items[item.id] = item
        for bundle in bundles:
            self._validate_bundle(bundle)
            self._bundles[bundle.id] = bundle

    def _validate_id(self, value: Any, kind: str) -> None:
        if not isinstance(value, str) or not value:
            raise _invalid(f"missing {kind} id")
        if not ITEM_ID_RE.match(value):
            raise _invalid(f"{kind} id {value!r} may only contain letters, digits, '-' and '_'")
        if value in self._items or value in self._bundles:
            raise _invalid(f"duplicate id {value!r}")

    def _validate_item(self, item: Item) -> None:
        self._validate_id(item.id, "item")
        if not isinstance(item.title, str) or not item.title:
            raise _invalid(f"missing title for {item.id}")
        if not _is_number(item.price) or item.price < 0:
            raise _invalid(f"invalid price for {item.id}: {item.price!r}")
        preview = item.preview if isinstance(item.preview, str) else ""
        if not preview.startswith("/") or not preview.lower().endswith(".png"):
            raise _invalid(f"preview must be a public .png path for {item.id}")
        file_name = item.file if isinstance(item.file, str) else ""
        if (
            not file_name
            or ".." in file_name
            or "/" in file_name
            or "\\" in file_name
            or not file_name.lower().endswith(".png")
        ):
            raise _invalid(f"file for {item.id} must be a raw .png file name")
        if item.free_if_hold is not None and (not _is_number(item.free_if_hold) or item.free_if_hold < 0):
            raise _invalid(f"freeIfHold must be a non-negative number for {item.id}")

    def _validate_bundle(self, bundle: Bundle) -> None:
        self._validate_id(bundle.id, "bundle")
        if not _is_number(bundle.price) or bundle.price < 0:
            raise _invalid(f"invalid price for bundle {bundle.id}: {bundle.price!r}")
        if not bundle.children:
            raise _invalid(f"bundle {bundle.id} has no children")
        for child in bundle.children:
            if child not in self._items:
                raise _invalid(f"bundle {bundle.id} references missing item {child!r}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Catalog":
        """Build a catalog from ``{"items": [...], "bundles": [...]}``."""
        try:
            items = [
                Item(
                    id=raw.get("id"),
                    title=raw.get("title"),
                    price=raw.get("price", raw.get("priceCrush")),
                    preview=raw.get("preview"),
                    file=raw.get("file"),
                    free_if_hold=raw.get("freeIfHold"),
                )
                for raw in data.get("items") or []
            ]
            bundles = [
                Bundle(
                    id=raw.get("id"),
                    title=raw.get("title") or raw.get("id"),
                    price=raw.get("price", raw.get("priceCrush")),
                    children=tuple(raw.get("children") or ()),
                )
                for raw in data.get("bundles") or []
            ]
        except AttributeError as e:
            raise _invalid(f"malformed entry ({e})") from e
        return cls(items, bundles)

    @classmethod
    def from_file(cls, path: str) -> "Catalog":
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise _invalid("top level must be an object")
        catalog = cls.from_mapping(data)
        logger.info(f"Loaded catalog from {path}: {len(catalog._items)} items, {len(catalog._bundles)} bundles")
        return catalog

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "Catalog":
        path = cfg.get("CATALOG_PATH")
        return cls.from_file(path) if path else cls()

    def get_item(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    def get_bundle(self, bundle_id: str) -> Optional[Bundle]:
        return self._bundles.get(bundle_id)

    def is_bundle(self, item_id: str) -> bool:
        return item_id in self._bundles

    def resolve(self, item_id: str) -> Optional[Purchasable]:
        """Resolve an item or bundle id; ``None`` if unknown."""
        bundle = self._bundles.get(item_id)
        if bundle is not None:
            return Purchasable(bundle.id, bundle.title, int(bundle.price), tuple(bundle.children), True)
        item = self._items.get(item_id)
        if item is not None:
            return Purchasable(item.id, item.title, int(item.price), (item.id,))
        return None

    def items(self) -> List[Item]:
        return list(self._items.values())

    def bundles(self) -> List[Bundle]:
        return list(self._bundles.values())
