#!/usr/bin/env python3
"""
gltf_usage.py
=============

Computes, for one element kind, the set of indices that something in the
document still refers to. Nothing here mutates the payload.

References that are not integers, or that point past the end of their target
array, raise ``MalformedReferenceError`` instead of being guessed at. A node
hierarchy that loops raises ``CyclicGraphError``.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Set

import gltf_walk as walk
from gltf_errors import CyclicGraphError, MalformedReferenceError
from gltf_kinds import ElementKind
from gltf_walk import JsonObject

NODE_CONTENT_KEYS = ("mesh", "camera", "skin", "weights", "extras")


def collection_length(gltf: JsonObject, kind: ElementKind) -> int:
    items = gltf.get(kind.collection)
    return len(items) if isinstance(items, list) else 0


class _UsedSet:
    """Collects validated references to one kind."""

    def __init__(self, gltf: JsonObject, kind: ElementKind) -> None:
        self.kind = kind
        self.length = collection_length(gltf, kind)
        self.indices: Set[int] = set()

    def check(self, value: Any, site: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedReferenceError(self.kind.value, value, site)
        if value < 0 or value >= self.length:
            raise MalformedReferenceError(self.kind.value, value, site, self.length)
        return value

    def mark(self, value: Any, site: str) -> None:
        if value is None:
            return
        self.indices.add(self.check(value, site))


# ---------------------------------------------------------------------------
# Per-kind analyzers
# ---------------------------------------------------------------------------

def _used_meshes(gltf: JsonObject) -> Set[int]:
    used = _UsedSet(gltf, ElementKind.MESH)
    mesh_list = gltf.get("meshes")
    for node_id, node in walk.nodes(gltf):
        mesh_id = node.get("mesh")
        if mesh_id is None:
            continue
        # A mesh without primitives has nothing to draw.
        mesh = mesh_list[used.check(mesh_id, f"nodes[{node_id}].mesh")]
        if not isinstance(mesh, dict):
            continue
        primitives = mesh.get("primitives")
        if isinstance(primitives, list) and primitives:
            used.indices.add(mesh_id)
    return used.indices


def _node_references(gltf: JsonObject) -> Set[int]:
    """Nodes targeted by skins, animations and technique uniforms."""
    used = _UsedSet(gltf, ElementKind.NODE)
    for skin_id, skin in walk.skins(gltf):
        used.mark(skin.get("skeleton"), f"skins[{skin_id}].skeleton")
        for joint_id, joint in walk.skin_joints(skin):
            used.mark(joint, f"skins[{skin_id}].joints[{joint_id}]")

    for animation_id, animation in walk.animations(gltf):
        for channel_id, channel in walk.animation_channels(animation):
            target = channel.get("target")
            if isinstance(target, dict):
                used.mark(
                    target.get("node"),
                    f"animations[{animation_id}].channels[{channel_id}].target.node",
                )

    for technique_id, technique in walk.techniques(gltf):
        for uniform_id, uniform in walk.technique_uniforms(technique):
            used.mark(uniform.get("node"), f"techniques[{technique_id}].uniforms.{uniform_id}.node")

    return used.indices


def _node_has_content(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    if any(node.get(key) is not None for key in NODE_CONTENT_KEYS):
        return True
    extensions = node.get("extensions")
    return isinstance(extensions, dict) and len(extensions) > 0


def empty_nodes(gltf: JsonObject, referenced: Set[int]) -> Set[int]:
    """Return the nodes that carry nothing and whose whole subtree carries nothing.

    A node in ``referenced`` is never empty. Emptiness is settled children
    first with an explicit stack, so every node is evaluated once.
    """
    node_list = gltf.get("nodes")
    if not isinstance(node_list, list):
        return set()
    count = len(node_list)

    children_by_node: Dict[int, List[int]] = {}

    def children_of(node_id: int) -> List[int]:
        cached = children_by_node.get(node_id)
        if cached is not None:
            return cached
        node = node_list[node_id]
        raw = node.get("children") if isinstance(node, dict) else None
        result: List[int] = []
        if isinstance(raw, list):
            for position, child in enumerate(raw):
                site = f"nodes[{node_id}].children[{position}]"
                if isinstance(child, bool) or not isinstance(child, int):
                    raise MalformedReferenceError(ElementKind.NODE.value, child, site)
                if child < 0 or child >= count:
                    raise MalformedReferenceError(ElementKind.NODE.value, child, site, count)
                result.append(child)
        children_by_node[node_id] = result
        return result

    is_empty: Dict[int, bool] = {}
    for root in range(count):
        if root in is_empty:
            continue
        path = [root]
        on_path = {root}
        pending = [iter(children_of(root))]
        while pending:
            node_id = path[-1]
            child = next(pending[-1], None)
            if child is not None:
                if child in on_path:
                    raise CyclicGraphError(path[path.index(child):] + [child])
                if child not in is_empty:
                    path.append(child)
                    on_path.add(child)
                    pending.append(iter(children_of(child)))
                continue

            pending.pop()
            path.pop()
            on_path.discard(node_id)
            is_empty[node_id] = (
                node_id not in referenced
                and not _node_has_content(node_list[node_id])
                and all(is_empty[c] for c in children_of(node_id))
            )

    return {node_id for node_id, empty in is_empty.items() if empty}


def _used_nodes(gltf: JsonObject) -> Set[int]:
    referenced = _node_references(gltf)
    empty = empty_nodes(gltf, referenced)
    return {node_id for node_id in range(collection_length(gltf, ElementKind.NODE)) if node_id not in empty}


def _used_materials(gltf: JsonObject) -> Set[int]:
    used = _UsedSet(gltf, ElementKind.MATERIAL)
    for mesh_id, mesh in walk.meshes(gltf):
        for prim_id, primitive in walk.mesh_primitives(mesh):
            used.mark(primitive.get("material"), f"meshes[{mesh_id}].primitives[{prim_id}].material")
    return used.indices


def _used_accessors(gltf: JsonObject) -> Set[int]:
    used = _UsedSet(gltf, ElementKind.ACCESSOR)
    for mesh_id, mesh in walk.meshes(gltf):
        for prim_id, primitive in walk.mesh_primitives(mesh):
            site = f"meshes[{mesh_id}].primitives[{prim_id}]"
            for semantic, accessor_id in walk.primitive_attributes(primitive):
                used.mark(accessor_id, f"{site}.attributes.{semantic}")
            for target_id, target in walk.primitive_targets(primitive):
                for semantic, accessor_id in walk.target_attributes(target):
                    used.mark(accessor_id, f"{site}.targets[{target_id}].{semantic}")
            used.mark(primitive.get("indices"), f"{site}.indices")

    for skin_id, skin in walk.skins(gltf):
        used.mark(skin.get("inverseBindMatrices"), f"skins[{skin_id}].inverseBindMatrices")

    for animation_id, animation in walk.animations(gltf):
        for sampler_id, sampler in walk.animation_samplers(animation):
            site = f"animations[{animation_id}].samplers[{sampler_id}]"
            used.mark(sampler.get("input"), f"{site}.input")
            used.mark(sampler.get("output"), f"{site}.output")

    if walk.uses_extension(gltf, walk.EXT_MESH_GPU_INSTANCING):
        for node_id, node in walk.nodes(gltf):
            attributes = walk.gpu_instancing_attributes(node)
            if attributes is None:
                continue
            for semantic, accessor_id in attributes.items():
                used.mark(accessor_id, f"nodes[{node_id}].extensions.{walk.EXT_MESH_GPU_INSTANCING}.{semantic}")

    return used.indices


def _used_buffer_views(gltf: JsonObject) -> Set[int]:
    used = _UsedSet(gltf, ElementKind.BUFFER_VIEW)
    for accessor_id, accessor in walk.accessors(gltf):
        used.mark(accessor.get("bufferView"), f"accessors[{accessor_id}].bufferView")
        sparse = accessor.get("sparse")
        if isinstance(sparse, dict):
            for part in ("indices", "values"):
                section = sparse.get(part)
                if isinstance(section, dict):
                    used.mark(section.get("bufferView"), f"accessors[{accessor_id}].sparse.{part}.bufferView")

    for shader_id, shader in walk.shaders(gltf):
        used.mark(shader.get("bufferView"), f"shaders[{shader_id}].bufferView")

    for image_id, image in walk.images(gltf):
        used.mark(image.get("bufferView"), f"images[{image_id}].bufferView")

    if walk.uses_extension(gltf, walk.KHR_DRACO_MESH_COMPRESSION):
        for mesh_id, mesh in walk.meshes(gltf):
            for prim_id, primitive in walk.mesh_primitives(mesh):
                draco = walk.object_extension(primitive, walk.KHR_DRACO_MESH_COMPRESSION)
                if draco is not None:
                    used.mark(
                        draco.get("bufferView"),
                        f"meshes[{mesh_id}].primitives[{prim_id}].extensions.{walk.KHR_DRACO_MESH_COMPRESSION}.bufferView",
                    )

    if walk.uses_extension(gltf, walk.EXT_FEATURE_METADATA):
        for prop in walk.feature_table_properties(gltf):
            for key in ("bufferView", "arrayOffsetBufferView", "stringOffsetBufferView"):
                used.mark(prop.get(key), f"extensions.{walk.EXT_FEATURE_METADATA}.featureTables.properties.{key}")

    return used.indices


def _used_buffers(gltf: JsonObject) -> Set[int]:
    used = _UsedSet(gltf, ElementKind.BUFFER)
    for view_id, view in walk.buffer_views(gltf):
        used.mark(view.get("buffer"), f"bufferViews[{view_id}].buffer")
    return used.indices


def _used_textures(gltf: JsonObject) -> Set[int]:
    used = _UsedSet(gltf, ElementKind.TEXTURE)
    for material_id, material in walk.materials(gltf):
        for slot in walk.material_texture_slots(material):
            used.mark(slot.index, f"materials[{material_id}].{slot.key}.index")

    if walk.uses_extension(gltf, walk.EXT_FEATURE_METADATA):
        for mesh_id, mesh in walk.meshes(gltf):
            for prim_id, primitive in walk.mesh_primitives(mesh):
                for feature_ids in walk.primitive_feature_id_textures(primitive):
                    info = feature_ids.get("texture")
                    if isinstance(info, dict):
                        used.mark(
                            info.get("index"),
                            f"meshes[{mesh_id}].primitives[{prim_id}].featureIdTextures.featureIds.texture.index",
                        )
        for prop in walk.feature_texture_properties(gltf):
            info = prop.get("texture")
            if isinstance(info, dict):
                used.mark(info.get("index"), f"extensions.{walk.EXT_FEATURE_METADATA}.featureTextures.properties.texture.index")

    return used.indices


def _used_samplers(gltf: JsonObject) -> Set[int]:
    used = _UsedSet(gltf, ElementKind.SAMPLER)
    for texture_id, texture in walk.textures(gltf):
        used.mark(texture.get("sampler"), f"textures[{texture_id}].sampler")
    return used.indices


def _used_images(gltf: JsonObject) -> Set[int]:
    used = _UsedSet(gltf, ElementKind.IMAGE)
    for texture_id, texture in walk.textures(gltf):
        for owner in walk.texture_source_owners(texture):
            used.mark(owner.get("source"), f"textures[{texture_id}].source")
    return used.indices


_USAGE_BY_KIND: Dict[ElementKind, Callable[[JsonObject], Set[int]]] = {
    ElementKind.MESH: _used_meshes,
    ElementKind.NODE: _used_nodes,
    ElementKind.MATERIAL: _used_materials,
    ElementKind.ACCESSOR: _used_accessors,
    ElementKind.BUFFER_VIEW: _used_buffer_views,
    ElementKind.BUFFER: _used_buffers,
    ElementKind.TEXTURE: _used_textures,
    ElementKind.SAMPLER: _used_samplers,
    ElementKind.IMAGE: _used_images,
}


def used_indices(gltf: JsonObject, kind: ElementKind) -> Set[int]:
    """Return the indices of ``kind`` that are referenced from anywhere reachable."""
    return _USAGE_BY_KIND[kind](gltf)
