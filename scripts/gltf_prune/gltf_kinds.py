#!/usr/bin/env python3
"""
gltf_kinds.py
=============

The element kinds that can be pruned from a glTF payload, the order in which
passes run, and the default subset.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple, Union


class ElementKind(Enum):
    MESH = "mesh"
    NODE = "node"
    MATERIAL = "material"
    ACCESSOR = "accessor"
    BUFFER_VIEW = "bufferView"
    BUFFER = "buffer"
    TEXTURE = "texture"
    SAMPLER = "sampler"
    IMAGE = "image"

    @property
    def collection(self) -> str:
        return COLLECTION_BY_KIND[self]


COLLECTION_BY_KIND: Dict[ElementKind, str] = {
    ElementKind.MESH: "meshes",
    ElementKind.NODE: "nodes",
    ElementKind.MATERIAL: "materials",
    ElementKind.ACCESSOR: "accessors",
    ElementKind.BUFFER_VIEW: "bufferViews",
    ElementKind.BUFFER: "buffers",
    ElementKind.TEXTURE: "textures",
    ElementKind.SAMPLER: "samplers",
    ElementKind.IMAGE: "images",
}

# Each pass can orphan elements handled by the passes after it.
PRUNE_ORDER: Tuple[ElementKind, ...] = (
    ElementKind.MESH,
    ElementKind.NODE,
    ElementKind.MATERIAL,
    ElementKind.ACCESSOR,
    ElementKind.BUFFER_VIEW,
    ElementKind.BUFFER,
    ElementKind.TEXTURE,
    ElementKind.SAMPLER,
    ElementKind.IMAGE,
)

# Textures, samplers and images are often kept for external lookup.
DEFAULT_KINDS: FrozenSet[ElementKind] = frozenset(
    {
        ElementKind.MESH,
        ElementKind.NODE,
        ElementKind.MATERIAL,
        ElementKind.ACCESSOR,
        ElementKind.BUFFER_VIEW,
        ElementKind.BUFFER,
    }
)

_KIND_BY_NAME: Dict[str, ElementKind] = {}
for _kind in ElementKind:
    _KIND_BY_NAME[_kind.value.lower()] = _kind
    _KIND_BY_NAME[_kind.name.lower()] = _kind
    _KIND_BY_NAME[_kind.collection.lower()] = _kind
_KIND_BY_NAME["buffer_views"] = ElementKind.BUFFER_VIEW


def kind_from_name(name: str) -> Optional[ElementKind]:
    """Resolve 'bufferView', 'BUFFER_VIEW' or 'bufferViews' alike; None when unknown."""
    return _KIND_BY_NAME.get(name.strip().lower())


def parse_kinds(names: Iterable[Union[ElementKind, str]]) -> FrozenSet[ElementKind]:
    kinds = set()
    for name in names:
        if isinstance(name, ElementKind):
            kinds.add(name)
            continue
        kind = kind_from_name(str(name))
        if kind is None:
            logging.debug("Ignoring unknown element kind %r", name)
            continue
        kinds.add(kind)
    return frozenset(kinds)
