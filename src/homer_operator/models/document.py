"""Dashboard configuration document models and YAML rendering."""

from __future__ import annotations

import copy
import enum
import re
from dataclasses import dataclass, field

import yaml

CRD_SOURCE = "crd"
FOOTER_HIDDEN = "__FOOTER_HIDDEN__"

_INT_RE = re.compile(r"^[+-]?\d+$")

# Parameter keys whose Homer spelling is camelCase
_YAML_KEYS = {
    "legacyapi": "legacyApi",
    "librarytype": "libraryType",
    "usecredentials": "useCredentials",
}


class ItemParam(enum.Enum):
    NAME = "name"
    URL = "url"
    SUBTITLE = "subtitle"
    LOGO = "logo"
    ICON = "icon"
    TAG = "tag"
    TAGSTYLE = "tagstyle"
    TYPE = "type"
    KEYWORDS = "keywords"
    TARGET = "target"
    HIDE = "hide"
    ENDPOINT = "endpoint"
    APIKEY = "apikey"
    USERNAME = "username"
    PASSWORD = "password"
    WARNING_VALUE = "warning_value"
    DANGER_VALUE = "danger_value"

    @classmethod
    def parse(cls, key: str) -> ItemParam | str:
        """Map a raw key onto a known parameter, or keep it as an extension."""
        lowered = key.strip().lower()
        for member in cls:
            if member.value == lowered:
                return member
        return lowered


def param_name(key: ItemParam | str) -> str:
    return key.value if isinstance(key, ItemParam) else key


def smart_infer_type(value: str):
    """Infer a YAML scalar type from an annotation string."""
    value = value.strip()
    lower = value.lower()
    if lower in ("true", "1", "yes", "on"):
        return True
    if lower in ("false", "0", "no", "off"):
        return False
    if _INT_RE.match(value):
        return int(value)
    return value


def is_truthy_flag(value: str) -> bool:
    inferred = smart_infer_type(value)
    if isinstance(inferred, bool):
        return inferred
    return value != ""


@dataclass
class Item:
    params: dict[ItemParam | str, str] = field(default_factory=dict)
    nested: dict[str, dict[str, str]] = field(default_factory=dict)
    source: str = ""
    namespace: str = ""

    def get(self, key: ItemParam | str, default: str = "") -> str:
        if isinstance(key, str):
            key = ItemParam.parse(key)
        return self.params.get(key, default)

    def set(self, key: ItemParam | str, value: str) -> None:
        if isinstance(key, str):
            key = ItemParam.parse(key)
        self.params[key] = value

    def set_nested(self, obj: str, prop: str, value: str) -> None:
        self.nested.setdefault(obj, {})[prop] = value

    @property
    def name(self) -> str:
        return self.get(ItemParam.NAME)

    @property
    def hidden(self) -> bool:
        if ItemParam.HIDE not in self.params:
            return False
        return is_truthy_flag(self.params[ItemParam.HIDE])

    def to_dict(self) -> dict:
        out: dict = {}
        for key, value in self.params.items():
            name = param_name(key)
            out[_YAML_KEYS.get(name, name)] = smart_infer_type(value)
        for obj, props in self.nested.items():
            out[obj] = dict(props)
        return out

    @classmethod
    def from_dict(cls, d: dict, source: str = CRD_SOURCE) -> Item:
        item = cls(source=source)
        if "parameters" in d or "nestedObjects" in d:
            for key, value in (d.get("parameters") or {}).items():
                item.set(key, str(value))
            for obj, props in (d.get("nestedObjects") or {}).items():
                for prop, value in (props or {}).items():
                    item.set_nested(obj, prop, str(value))
            return item
        for key, value in d.items():
            if isinstance(value, dict):
                for prop, inner in value.items():
                    item.set_nested(key, prop, str(inner))
            elif isinstance(value, bool):
                item.set(key, "true" if value else "false")
            elif value is not None:
                item.set(key, str(value))
        return item


@dataclass
class Group:
    params: dict[str, str] = field(default_factory=dict)
    nested: dict[str, dict[str, str]] = field(default_factory=dict)
    items: list[Item] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.params.get("name", "")

    def find_item(self, name: str) -> Item | None:
        for item in self.items:
            if item.name == name:
                return item
        return None

    @property
    def has_static_items(self) -> bool:
        return any(i.source == CRD_SOURCE for i in self.items)

    def to_dict(self) -> dict:
        out: dict = {key: smart_infer_type(value) for key, value in self.params.items()}
        for obj, props in self.nested.items():
            out[obj] = dict(props)
        rendered = [i.to_dict() for i in self.items]
        rendered = [r for r in rendered if r]
        if rendered:
            out["items"] = rendered
        return out

    @classmethod
    def from_dict(cls, d: dict) -> Group:
        group = cls()
        if "parameters" in d or "nestedObjects" in d:
            group.params = {k.lower(): str(v) for k, v in (d.get("parameters") or {}).items()}
            group.nested = {
                obj: {p: str(v) for p, v in (props or {}).items()}
                for obj, props in (d.get("nestedObjects") or {}).items()
            }
        else:
            for key, value in d.items():
                if key == "items":
                    continue
                if isinstance(value, dict):
                    group.nested[key] = {p: str(v) for p, v in value.items()}
                elif value is not None:
                    group.params[key.lower()] = str(value)
        group.items = [Item.from_dict(i) for i in d.get("items") or []]
        return group


@dataclass
class ConfigDocument:
    """A Homer configuration: pass-through base keys plus ordered groups."""

    base: dict = field(default_factory=dict)
    groups: list[Group] = field(default_factory=list)

    def find_group(self, name: str) -> Group | None:
        for group in self.groups:
            if group.name == name:
                return group
        return None

    def remove_source(self, source: str, namespace: str) -> None:
        """Drop every item emitted for a source, then any group left empty."""
        for group in self.groups:
            group.items = [
                i for i in group.items if not (i.source == source and i.namespace == namespace)
            ]
        self.groups = [g for g in self.groups if g.items]

    def sort(self) -> None:
        self.groups.sort(key=lambda g: g.name.lower())
        for group in self.groups:
            group.items.sort(key=lambda i: i.name.lower())

    @property
    def item_count(self) -> int:
        return sum(len(g.items) for g in self.groups)

    def to_dict(self) -> dict:
        out = copy.deepcopy(self.base)
        if not out.get("header"):
            out["header"] = True
        footer = out.get("footer")
        if footer == FOOTER_HIDDEN:
            out["footer"] = False
        elif footer in ("", None):
            out.pop("footer", None)
        services = [g.to_dict() for g in self.groups]
        services = [s for s in services if s]
        if services:
            out["services"] = services
        else:
            out.pop("services", None)
        return out

    @classmethod
    def from_homer_config(cls, d: dict | None) -> ConfigDocument:
        d = copy.deepcopy(d or {})
        services = d.pop("services", None) or []
        if d.get("footer") is False:
            d["footer"] = FOOTER_HIDDEN
        return cls(base=d, groups=[Group.from_dict(s) for s in services])

    @classmethod
    def from_yaml(cls, text: str) -> ConfigDocument:
        loaded = yaml.safe_load(text) or {}
        if not isinstance(loaded, dict):
            raise ValueError("configuration document must be a mapping")
        return cls.from_homer_config(loaded)


def render_document(doc: ConfigDocument) -> str:
    return yaml.safe_dump(
        doc.to_dict(),
        default_flow_style=False,
        sort_keys=True,
        allow_unicode=True,
    )
