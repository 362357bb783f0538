#!/usr/bin/env python3
"""
gltf_reindex.py
===============

Deletes one element from its top-level array and rewrites every reference to
that kind so the remaining indices stay dense:

* a reference to the deleted element is cleared (the JSON member is deleted,
  or the entry is dropped from its list),
* a reference past it is decremented,
* a reference before it is left alone.
"""

from __future__ import annotations

from typing import Any, Callable, Dict

import gltf_walk as walk
from gltf_errors import MalformedReferenceError
from gltf_kinds import ElementKind
from gltf_walk import JsonObject


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _shift_member(owner: Any, key: str, victim: int) -> None:
    if not isinstance(owner, dict):
        return
    value = owner.get(key)
    if not _is_index(value):
        return
    if value == victim:
        del owner[key]
    elif value > victim:
        owner[key] = value - 1


def _shift_mapping(mapping: Any, victim: int) -> None:
    """Shift every value of a semantic -> index map (attributes, morph targets)."""
    if not isinstance(mapping, dict):
        return
    for key in list(mapping):
        _shift_member(mapping, key, victim)


def _shift_list(owner: Any, key: str, victim: int) -> None:
    """Drop entries equal to ``victim`` and decrement later ones; an emptied list is deleted."""
    if not isinstance(owner, dict):
        return
    values = owner.get(key)
    if not isinstance(values, list):
        return
    values[:] = [
        value - 1 if _is_index(value) and value > victim else value
        for value in values
        if not (_is_index(value) and value == victim)
    ]
    if not values:
        del owner[key]


def _shift_values(owner: Any, key: str, victim: int) -> None:
    if not isinstance(owner, dict):
        return
    values = owner.get(key)
    if not isinstance(values, list):
        return
    values[:] = [value - 1 if _is_index(value) and value > victim else value for value in values]


def _shift_texture_info(owner: Any, key: str, victim: int) -> None:
    if not isinstance(owner, dict):
        return
    info = owner.get(key)
    if not isinstance(info, dict):
        return
    index = info.get("index")
    if not _is_index(index):
        return
    if index == victim:
        del owner[key]
    elif index > victim:
        info["index"] = index - 1


# ---------------------------------------------------------------------------
# Per-kind reference fixups
# ---------------------------------------------------------------------------

def _reindex_mesh(gltf: JsonObject, victim: int) -> None:
    for _node_id, node in walk.nodes(gltf):
        _shift_member(node, "mesh", victim)


def _reindex_node(gltf: JsonObject, victim: int) -> None:
    for _skin_id, skin in walk.skins(gltf):
        _shift_member(skin, "skeleton", victim)
        # JOINTS_0 values index into this list, so positions must not move.
        _shift_values(skin, "joints", victim)

    for _animation_id, animation in walk.animations(gltf):
        for _channel_id, channel in walk.animation_channels(animation):
            _shift_member(channel.get("target"), "node", victim)

    for _technique_id, technique in walk.techniques(gltf):
        for _uniform_id, uniform in walk.technique_uniforms(technique):
            _shift_member(uniform, "node", victim)

    # glTF requires non-empty children/nodes arrays, so drop them once emptied.
    for _node_id, node in walk.nodes(gltf):
        _shift_list(node, "children", victim)

    for _scene_id, scene in walk.scenes(gltf):
        _shift_list(scene, "nodes", victim)


def _reindex_material(gltf: JsonObject, victim: int) -> None:
    for _mesh_id, mesh in walk.meshes(gltf):
        for _prim_id, primitive in walk.mesh_primitives(mesh):
            _shift_member(primitive, "material", victim)


def _reindex_accessor(gltf: JsonObject, victim: int) -> None:
    for _mesh_id, mesh in walk.meshes(gltf):
        for _prim_id, primitive in walk.mesh_primitives(mesh):
            _shift_mapping(primitive.get("attributes"), victim)
            for _target_id, target in walk.primitive_targets(primitive):
                _shift_mapping(target, victim)
            _shift_member(primitive, "indices", victim)

    for _skin_id, skin in walk.skins(gltf):
        _shift_member(skin, "inverseBindMatrices", victim)

    for _animation_id, animation in walk.animations(gltf):
        for _sampler_id, sampler in walk.animation_samplers(animation):
            _shift_member(sampler, "input", victim)
            _shift_member(sampler, "output", victim)

    if walk.uses_extension(gltf, walk.EXT_MESH_GPU_INSTANCING):
        for _node_id, node in walk.nodes(gltf):
            _shift_mapping(walk.gpu_instancing_attributes(node), victim)


def _reindex_buffer_view(gltf: JsonObject, victim: int) -> None:
    for _accessor_id, accessor in walk.accessors(gltf):
        _shift_member(accessor, "bufferView", victim)
        sparse = accessor.get("sparse")
        if isinstance(sparse, dict):
            _shift_member(sparse.get("indices"), "bufferView", victim)
            _shift_member(sparse.get("values"), "bufferView", victim)

    for _shader_id, shader in walk.shaders(gltf):
        _shift_member(shader, "bufferView", victim)

    for _image_id, image in walk.images(gltf):
        _shift_member(image, "bufferView", victim)

    if walk.uses_extension(gltf, walk.KHR_DRACO_MESH_COMPRESSION):
        for _mesh_id, mesh in walk.meshes(gltf):
            for _prim_id, primitive in walk.mesh_primitives(mesh):
                draco = walk.object_extension(primitive, walk.KHR_DRACO_MESH_COMPRESSION)
                _shift_member(draco, "bufferView", victim)

    if walk.uses_extension(gltf, walk.EXT_FEATURE_METADATA):
        for prop in walk.feature_table_properties(gltf):
            _shift_member(prop, "bufferView", victim)
            _shift_member(prop, "arrayOffsetBufferView", victim)
            _shift_member(prop, "stringOffsetBufferView", victim)


def _reindex_buffer(gltf: JsonObject, victim: int) -> None:
    for _view_id, view in walk.buffer_views(gltf):
        _shift_member(view, "buffer", victim)


def _reindex_texture(gltf: JsonObject, victim: int) -> None:
    for _material_id, material in walk.materials(gltf):
        for slot in walk.material_texture_slots(material):
            _shift_texture_info(slot.owner, slot.key, victim)

    if walk.uses_extension(gltf, walk.EXT_FEATURE_METADATA):
        for _mesh_id, mesh in walk.meshes(gltf):
            for _prim_id, primitive in walk.mesh_primitives(mesh):
                for feature_ids in walk.primitive_feature_id_textures(primitive):
                    _shift_texture_info(feature_ids, "texture", victim)
        for prop in walk.feature_texture_properties(gltf):
            _shift_texture_info(prop, "texture", victim)


def _reindex_sampler(gltf: JsonObject, victim: int) -> None:
    for _texture_id, texture in walk.textures(gltf):
        _shift_member(texture, "sampler", victim)


def _reindex_image(gltf: JsonObject, victim: int) -> None:
    for _texture_id, texture in walk.textures(gltf):
        for owner in walk.texture_source_owners(texture):
            _shift_member(owner, "source", victim)


_REINDEX_BY_KIND: Dict[ElementKind, Callable[[JsonObject, int], None]] = {
    ElementKind.MESH: _reindex_mesh,
    ElementKind.NODE: _reindex_node,
    ElementKind.MATERIAL: _reindex_material,
    ElementKind.ACCESSOR: _reindex_accessor,
    ElementKind.BUFFER_VIEW: _reindex_buffer_view,
    ElementKind.BUFFER: _reindex_buffer,
    ElementKind.TEXTURE: _reindex_texture,
    ElementKind.SAMPLER: _reindex_sampler,
    ElementKind.IMAGE: _reindex_image,
}


def remove_element(gltf: JsonObject, kind: ElementKind, index: int) -> None:
    """Delete ``gltf[kind.collection][index]`` and fix up every reference to ``kind``.

    Removing from a missing or empty array does nothing. An index outside the
    array raises ``MalformedReferenceError``.
    """
    items = gltf.get(kind.collection)
    if not isinstance(items, list) or not items:
        return
    if not _is_index(index) or index < 0 or index >= len(items):
        raise MalformedReferenceError(kind.value, index, f"remove from {kind.collection}", len(items))

    del items[index]
    _REINDEX_BY_KIND[kind](gltf, index)
