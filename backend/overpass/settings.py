from __future__ import annotations

import copy
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

DEFAULT_ITEM_COLOR: tuple[int, int, int, int] = (150, 150, 150, 255)


def _categories_yaml() -> Path:
    return Path(__file__).resolve().parent / "categories.yaml"


class CategoryDef(BaseModel):
    key: str | None = None
    items: list[str] = Field(default_factory=list)


class CategoriesFile(BaseModel):
    categories: dict[str, CategoryDef]


@lru_cache(maxsize=1)
def load_category_defs() -> dict[str, CategoryDef]:
    raw = _categories_yaml().read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid categories yaml root: {_categories_yaml()}")
    return CategoriesFile.model_validate(data).categories


@dataclass
class SettingItem:
    enabled: bool = False
    color: tuple[int, int, int, int] = DEFAULT_ITEM_COLOR


@dataclass
class Category:
    """
    One top-level OSM key and its subkeys.

    `all` and `none` are mutually exclusive bulk toggles. Toggling a single item
    clears both.
    """

    key: str
    items: dict[str, SettingItem] = field(default_factory=dict)
    disabled: bool = False
    all: bool = False
    none: bool = False

    def set_children(self, on: bool) -> None:
        for item in self.items.values():
            item.enabled = on

    def set_all(self) -> None:
        self.all = True
        self.none = False
        self.set_children(True)

    def set_none(self) -> None:
        self.none = True
        self.all = False
        self.set_children(False)

    def toggle(self, subkey: str, on: bool) -> None:
        item = self.items.get(subkey)
        if item is None:
            raise KeyError(subkey)
        item.enabled = bool(on)
        self.all = False
        self.none = False

    def enabled_items(self) -> list[str]:
        return [k for k in sorted(self.items) if self.items[k].enabled]


@dataclass
class OverpassSettings:
    """
    Category name -> `Category`, iterated in name order.
    """

    categories: dict[str, Category] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "OverpassSettings":
        cats: dict[str, Category] = {}
        for name, cat_def in load_category_defs().items():
            cats[name] = Category(
                key=(cat_def.key or name).lower(),
                items={item: SettingItem() for item in cat_def.items},
            )
        return cls(categories=cats)

    def snapshot(self) -> "OverpassSettings":
        return copy.deepcopy(self)

    def category(self, name: str) -> Category:
        cat = self.categories.get(name)
        if cat is None:
            raise KeyError(name)
        return cat

    def enable(self, category: str, subkey: str) -> None:
        self.category(category).toggle(subkey, True)

    def enabled_pairs(self) -> list[tuple[str, str]]:
        """
        Enabled (category_key, subkey) pairs.

        Disabled categories yield nothing; a category with `all` set yields a
        single (key, "*") pair.
        """
        out: list[tuple[str, str]] = []
        for name in sorted(self.categories):
            cat = self.categories[name]
            if cat.disabled:
                continue
            if cat.all:
                out.append((cat.key, "*"))
                continue
            out.extend((cat.key, sub) for sub in cat.enabled_items())
        return out

    def colors(self) -> dict[tuple[str, str], tuple[int, int, int, int]]:
        """(category_key, subkey) -> display color for every enabled item."""
        out: dict[tuple[str, str], tuple[int, int, int, int]] = {}
        for cat in self.categories.values():
            for sub, item in cat.items.items():
                if item.enabled:
                    out[(cat.key, sub)] = item.color
        return out
