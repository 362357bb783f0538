#!/usr/bin/env python3
"""
gltf_prune.py
=============

Removes unused meshes, nodes, materials, accessors, buffer views, buffers and
(optionally) textures, samplers and images from a parsed glTF payload.

Passes run in a fixed order, each one on the document as left by the previous
pass: dropping an empty mesh can leave its node empty, dropping that node can
orphan a material, and so on down to the buffers. When the image pass drops
anything, buffer views and buffers get one more pass so image bytes stored in
the binary buffer go too.

Example:

    payload, blob = glb_io.load_glb_payload(path)
    prune_unused_elements(payload, ["accessor", "bufferView", "buffer"])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

from gltf_kinds import DEFAULT_KINDS, PRUNE_ORDER, ElementKind, parse_kinds
from gltf_reindex import remove_element
from gltf_usage import used_indices
from gltf_walk import JsonObject

# Images stored in buffer views are only released by the image pass, which
# runs after these.
RELEASED_BY_IMAGES = (ElementKind.BUFFER_VIEW, ElementKind.BUFFER)


@dataclass
class PassResult:
    kind: ElementKind
    count_before: int = 0
    count_after: int = 0
    removed: List[int] = field(default_factory=list)  # indices as they were before the pass

    def absorb(self, later: PassResult) -> None:
        """Fold a later pass over the same array into this one, keeping original indices."""
        removed = set(self.removed)
        survivors = [index for index in range(self.count_before) if index not in removed]
        self.removed = sorted(self.removed + [survivors[index] for index in later.removed])
        self.count_after = later.count_after


@dataclass
class PruneReport:
    passes: Dict[ElementKind, PassResult] = field(default_factory=dict)

    @property
    def total_removed(self) -> int:
        return sum(len(result.removed) for result in self.passes.values())

    def removed_counts(self) -> Dict[str, int]:
        return {kind.value: len(result.removed) for kind, result in self.passes.items()}

    def to_dict(self) -> Dict[str, object]:
        return {
            kind.value: {
                "before": result.count_before,
                "after": result.count_after,
                "removed": list(result.removed),
            }
            for kind, result in self.passes.items()
        }


def prune_kind(gltf: JsonObject, kind: ElementKind) -> Optional[PassResult]:
    """Run one pass; returns None when the document has no array for ``kind``."""
    items = gltf.get(kind.collection)
    if not isinstance(items, list):
        return None

    result = PassResult(kind=kind, count_before=len(items))
    # Computed once against the original indices; every removal shifts the
    # later elements down by one, hence the offset.
    used = used_indices(gltf, kind)
    removed = 0
    for index in range(result.count_before):
        if index in used:
            continue
        remove_element(gltf, kind, index - removed)
        result.removed.append(index)
        removed += 1

    result.count_after = len(items)
    if removed:
        logging.debug(
            "Pruned %d/%d unused %s: %s",
            removed,
            result.count_before,
            kind.collection,
            result.removed,
        )
    return result


def prune_unused_elements(
    gltf: JsonObject,
    element_kinds: Optional[Iterable[Union[ElementKind, str]]] = None,
    report: Optional[PruneReport] = None,
) -> JsonObject:
    """Remove unreferenced elements in place and return the same payload.

    ``element_kinds`` defaults to meshes, nodes, materials, accessors, buffer
    views and buffers. Unknown kind names are ignored.
    """
    kinds = DEFAULT_KINDS if element_kinds is None else parse_kinds(element_kinds)

    results: Dict[ElementKind, PassResult] = {}
    for kind in PRUNE_ORDER:
        if kind not in kinds:
            continue
        result = prune_kind(gltf, kind)
        if result is not None:
            results[kind] = result

    image_pass = results.get(ElementKind.IMAGE)
    if image_pass is not None and image_pass.removed:
        for kind in RELEASED_BY_IMAGES:
            if kind not in kinds:
                continue
            follow_up = prune_kind(gltf, kind)
            if follow_up is None:
                continue
            if kind in results:
                results[kind].absorb(follow_up)
            else:
                results[kind] = follow_up

    if report is not None:
        report.passes.update(results)
    return gltf
