"""
Read-only metadata catalog loaded from a YAML document.

Layout::

    org_unit_levels:      [{level, name}]
    org_unit_group_sets:  [{id, uid, name, created}]
    legend_sets:          [{id, uid, name}]
    categories:           [{id, uid, name, data_dimension, created}]
    category_combos:      [{uid, is_default, categories: [uid]}]
    data_elements:        [{id, uid, name, value_type, legend_sets: [uid], ...}]
    attributes:           [{id, uid, name, value_type, legend_sets: [uid], ...}]
    tracked_entity_types: [{id, uid, name, attributes: [uid]}]
    programs:             [{id, uid, name, registration, category_combo,
                            tracked_entity_type, data_elements, attributes}]

Cross references are by uid and are resolved when the catalog is built; a
dangling reference or a malformed uid is a ``ConfigurationError``.
"""
from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd
import structlog

from analytics_tables.core.errors import ConfigurationError
from analytics_tables.core.json import load_yaml
from analytics_tables.metadata.model import (
    Category,
    CategoryCombo,
    DataElement,
    LegendSet,
    OrganisationUnitGroupSet,
    OrganisationUnitLevel,
    Program,
    TrackedEntityAttribute,
    TrackedEntityType,
    ValueType,
)
from analytics_tables.sql.template import is_valid_uid

log = structlog.get_logger(mod="metadata.catalog")


def _uid(entry: Mapping[str, Any], section: str) -> str:
    uid = entry.get("uid")
    if not is_valid_uid(uid):
        raise ConfigurationError(f"Invalid uid in '{section}': {uid!r}")
    return uid


def _created(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return pd.Timestamp(value).to_pydatetime()


def _index(items, section: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for item in items:
        if item.uid in out:
            raise ConfigurationError(f"Duplicate uid '{item.uid}' in '{section}'")
        out[item.uid] = item
    return out


def _resolve(refs, pool: Mapping[str, Any], section: str, owner: str) -> Tuple:
    out = []
    for ref in refs or ():
        try:
            out.append(pool[ref])
        except KeyError:
            raise ConfigurationError(
                f"'{owner}' references unknown {section} '{ref}'"
            ) from None
    return tuple(out)


class MetadataCatalog:
    def __init__(
        self,
        programs: List[Program],
        tracked_entity_types: List[TrackedEntityType],
        org_unit_levels: List[OrganisationUnitLevel],
        org_unit_group_sets: List[OrganisationUnitGroupSet],
    ):
        self._programs = list(programs)
        self._tracked_entity_types = list(tracked_entity_types)
        self._org_unit_levels = sorted(org_unit_levels, key=lambda lv: lv.level)
        self._org_unit_group_sets = list(org_unit_group_sets)

    @classmethod
    def load(cls, path) -> "MetadataCatalog":
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Metadata file not found: {path}")
        catalog = cls.from_dict(load_yaml(path))
        log.info(
            "catalog.loaded",
            path=str(path),
            programs=len(catalog.programs()),
            tracked_entity_types=len(catalog.tracked_entity_types()),
        )
        return catalog

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> "MetadataCatalog":
        levels = [
            OrganisationUnitLevel(level=int(e["level"]), name=e.get("name", ""))
            for e in doc.get("org_unit_levels") or []
        ]
        group_sets = [
            OrganisationUnitGroupSet(
                id=int(e["id"]),
                uid=_uid(e, "org_unit_group_sets"),
                name=e.get("name", ""),
                created=_created(e.get("created")),
            )
            for e in doc.get("org_unit_group_sets") or []
        ]
        legend_sets = _index(
            [
                LegendSet(id=int(e["id"]), uid=_uid(e, "legend_sets"), name=e.get("name", ""))
                for e in doc.get("legend_sets") or []
            ],
            "legend_sets",
        )
        categories = _index(
            [
                Category(
                    id=int(e["id"]),
                    uid=_uid(e, "categories"),
                    name=e.get("name", ""),
                    data_dimension=bool(e.get("data_dimension", True)),
                    created=_created(e.get("created")),
                )
                for e in doc.get("categories") or []
            ],
            "categories",
        )
        combos = _index(
            [
                CategoryCombo(
                    uid=_uid(e, "category_combos"),
                    categories=_resolve(e.get("categories"), categories, "category", e["uid"]),
                    is_default=bool(e.get("is_default", False)),
                )
                for e in doc.get("category_combos") or []
            ],
            "category_combos",
        )
        data_elements = _index(
            [
                DataElement(
                    id=int(e["id"]),
                    uid=_uid(e, "data_elements"),
                    name=e.get("name", ""),
                    value_type=ValueType.parse(e.get("value_type")),
                    raw_value_type=e.get("value_type"),
                    legend_sets=_resolve(e.get("legend_sets"), legend_sets, "legend set", e["uid"]),
                    has_option_set=bool(e.get("has_option_set", False)),
                    skip_analytics=bool(e.get("skip_analytics", False)),
                    deleted=bool(e.get("deleted", False)),
                    created=_created(e.get("created")),
                )
                for e in doc.get("data_elements") or []
            ],
            "data_elements",
        )
        attributes = _index(
            [
                TrackedEntityAttribute(
                    id=int(e["id"]),
                    uid=_uid(e, "attributes"),
                    name=e.get("name", ""),
                    value_type=ValueType.parse(e.get("value_type")),
                    raw_value_type=e.get("value_type"),
                    legend_sets=_resolve(e.get("legend_sets"), legend_sets, "legend set", e["uid"]),
                    has_option_set=bool(e.get("has_option_set", False)),
                    confidential=bool(e.get("confidential", False)),
                    deleted=bool(e.get("deleted", False)),
                    created=_created(e.get("created")),
                )
                for e in doc.get("attributes") or []
            ],
            "attributes",
        )
        tets = _index(
            [
                TrackedEntityType(
                    id=int(e["id"]),
                    uid=_uid(e, "tracked_entity_types"),
                    name=e.get("name", ""),
                    attributes=_resolve(e.get("attributes"), attributes, "attribute", e["uid"]),
                )
                for e in doc.get("tracked_entity_types") or []
            ],
            "tracked_entity_types",
        )

        programs = []
        for e in doc.get("programs") or []:
            uid = _uid(e, "programs")
            combo = e.get("category_combo")
            tet = e.get("tracked_entity_type")
            programs.append(
                Program(
                    id=int(e["id"]),
                    uid=uid,
                    name=e.get("name", ""),
                    registration=bool(e.get("registration", True)),
                    category_combo=_resolve([combo], combos, "category combo", uid)[0]
                    if combo
                    else None,
                    tracked_entity_type=_resolve([tet], tets, "tracked entity type", uid)[0]
                    if tet
                    else None,
                    data_elements=_resolve(e.get("data_elements"), data_elements, "data element", uid),
                    attributes=_resolve(e.get("attributes"), attributes, "attribute", uid),
                )
            )
        _index(programs, "programs")

        return cls(programs, list(tets.values()), levels, group_sets)

    def programs(self) -> List[Program]:
        return list(self._programs)

    def tracked_entity_types(self) -> List[TrackedEntityType]:
        return list(self._tracked_entity_types)

    def org_unit_levels(self) -> List[OrganisationUnitLevel]:
        return list(self._org_unit_levels)

    def org_unit_group_sets(self) -> List[OrganisationUnitGroupSet]:
        return list(self._org_unit_group_sets)
