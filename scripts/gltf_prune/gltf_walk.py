#!/usr/bin/env python3
"""
gltf_walk.py
============

Read helpers over a parsed glTF JSON payload (a plain ``dict``).

Every walker is a generator that starts a fresh traversal on each call and
yields ``(index_or_key, obj)`` pairs. Missing collections yield nothing and
entries that are not JSON objects are skipped, so callers never need to
guard against absent arrays. Yielded objects are the payload's own dicts:
mutating them mutates the document.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple

JsonObject = Dict[str, Any]

KHR_DRACO_MESH_COMPRESSION = "KHR_draco_mesh_compression"
EXT_FEATURE_METADATA = "EXT_feature_metadata"
EXT_MESH_GPU_INSTANCING = "EXT_mesh_gpu_instancing"
KHR_TECHNIQUES_WEBGL = "KHR_techniques_webgl"

# Checked in order; a texture uses at most one of these image variants.
TEXTURE_SOURCE_EXTENSIONS: Tuple[str, ...] = ("EXT_texture_webp", "KHR_texture_basisu")

CORE_MATERIAL_TEXTURES: Tuple[str, ...] = ("normalTexture", "occlusionTexture", "emissiveTexture")
PBR_MATERIAL_TEXTURES: Tuple[str, ...] = ("baseColorTexture", "metallicRoughnessTexture")


def _iter_objects(container: Any) -> Iterator[Tuple[Any, JsonObject]]:
    # glTF 2.0 uses arrays; glTF 1.0 and some extensions key objects by id.
    if isinstance(container, list):
        for index, item in enumerate(container):
            if isinstance(item, dict):
                yield index, item
    elif isinstance(container, dict):
        for key, item in container.items():
            if isinstance(item, dict):
                yield key, item


def _iter_collection(gltf: JsonObject, name: str) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_objects(gltf.get(name))


def uses_extension(gltf: JsonObject, name: str) -> bool:
    used = gltf.get("extensionsUsed")
    return isinstance(used, list) and name in used


def root_extension(gltf: JsonObject, name: str) -> Optional[JsonObject]:
    extensions = gltf.get("extensions")
    if not isinstance(extensions, dict):
        return None
    extension = extensions.get(name)
    return extension if isinstance(extension, dict) else None


def object_extension(obj: JsonObject, name: str) -> Optional[JsonObject]:
    extensions = obj.get("extensions")
    if not isinstance(extensions, dict):
        return None
    extension = extensions.get(name)
    return extension if isinstance(extension, dict) else None


# ---------------------------------------------------------------------------
# Top-level collections
# ---------------------------------------------------------------------------

def accessors(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "accessors")


def animations(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "animations")


def buffers(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "buffers")


def buffer_views(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "bufferViews")


def images(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "images")


def materials(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "materials")


def meshes(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "meshes")


def nodes(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "nodes")


def samplers(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "samplers")


def scenes(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "scenes")


def skins(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "skins")


def textures(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_collection(gltf, "textures")


def shaders(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    techniques_webgl = root_extension(gltf, KHR_TECHNIQUES_WEBGL)
    if techniques_webgl is not None:
        return _iter_objects(techniques_webgl.get("shaders"))
    return _iter_collection(gltf, "shaders")


def techniques(gltf: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    techniques_webgl = root_extension(gltf, KHR_TECHNIQUES_WEBGL)
    if techniques_webgl is not None:
        return _iter_objects(techniques_webgl.get("techniques"))
    return _iter_collection(gltf, "techniques")


# ---------------------------------------------------------------------------
# Nested structures
# ---------------------------------------------------------------------------

def mesh_primitives(mesh: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_objects(mesh.get("primitives"))


def primitive_attributes(primitive: JsonObject) -> Iterator[Tuple[str, Any]]:
    attributes = primitive.get("attributes")
    if isinstance(attributes, dict):
        yield from list(attributes.items())


def primitive_targets(primitive: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_objects(primitive.get("targets"))


def target_attributes(target: JsonObject) -> Iterator[Tuple[str, Any]]:
    yield from list(target.items())


def skin_joints(skin: JsonObject) -> Iterator[Tuple[int, Any]]:
    joints = skin.get("joints")
    if isinstance(joints, list):
        yield from enumerate(list(joints))


def animation_samplers(animation: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_objects(animation.get("samplers"))


def animation_channels(animation: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_objects(animation.get("channels"))


def technique_uniforms(technique: JsonObject) -> Iterator[Tuple[Any, JsonObject]]:
    return _iter_objects(technique.get("uniforms"))


def gpu_instancing_attributes(node: JsonObject) -> Optional[JsonObject]:
    instancing = object_extension(node, EXT_MESH_GPU_INSTANCING)
    if instancing is None:
        return None
    attributes = instancing.get("attributes")
    return attributes if isinstance(attributes, dict) else None


def texture_source_owners(texture: JsonObject) -> Iterator[JsonObject]:
    """Yield the texture itself, then the first image-variant extension it carries.

    A later variant on the same texture is neither counted nor reindexed, so
    its ``source`` can dangle once images are pruned.
    """
    yield texture
    for name in TEXTURE_SOURCE_EXTENSIONS:
        variant = object_extension(texture, name)
        if variant is not None:
            yield variant
            return


# ---------------------------------------------------------------------------
# EXT_feature_metadata
# ---------------------------------------------------------------------------

def primitive_feature_id_textures(primitive: JsonObject) -> Iterator[JsonObject]:
    """Yield the ``featureIds`` objects of a primitive (each holds a ``texture`` textureInfo)."""
    metadata = object_extension(primitive, EXT_FEATURE_METADATA)
    if metadata is None:
        return
    for _index, feature_id_texture in _iter_objects(metadata.get("featureIdTextures")):
        feature_ids = feature_id_texture.get("featureIds")
        if isinstance(feature_ids, dict):
            yield feature_ids


def feature_table_properties(gltf: JsonObject) -> Iterator[JsonObject]:
    metadata = root_extension(gltf, EXT_FEATURE_METADATA)
    if metadata is None:
        return
    for _table_id, table in _iter_objects(metadata.get("featureTables")):
        for _property_id, prop in _iter_objects(table.get("properties")):
            yield prop


def feature_texture_properties(gltf: JsonObject) -> Iterator[JsonObject]:
    metadata = root_extension(gltf, EXT_FEATURE_METADATA)
    if metadata is None:
        return
    for _texture_id, feature_texture in _iter_objects(metadata.get("featureTextures")):
        for _property_id, prop in _iter_objects(feature_texture.get("properties")):
            yield prop


# ---------------------------------------------------------------------------
# Material textures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextureSlot:
    """A textureInfo stored at ``owner[key]``."""

    owner: JsonObject
    key: str

    @property
    def info(self) -> JsonObject:
        return self.owner[self.key]

    @property
    def index(self) -> Any:
        return self.info.get("index")

    def clear(self) -> None:
        self.owner.pop(self.key, None)


def _texture_slot(owner: Any, key: str) -> Optional[TextureSlot]:
    if not isinstance(owner, dict):
        return None
    info = owner.get(key)
    if isinstance(info, dict) and "index" in info:
        return TextureSlot(owner=owner, key=key)
    return None


def material_texture_slots(material: JsonObject) -> Iterator[TextureSlot]:
    """Yield every texture reference of a material, core and extension defined."""
    slots = []
    for key in CORE_MATERIAL_TEXTURES:
        slots.append(_texture_slot(material, key))

    pbr = material.get("pbrMetallicRoughness")
    for key in PBR_MATERIAL_TEXTURES:
        slots.append(_texture_slot(pbr, key))

    extensions = material.get("extensions")
    if isinstance(extensions, dict):
        for name, extension in extensions.items():
            if not isinstance(extension, dict):
                continue
            if name == KHR_TECHNIQUES_WEBGL:
                values = extension.get("values")
                if isinstance(values, dict):
                    slots.extend(_texture_slot(values, key) for key in list(values))
                continue
            # KHR_materials_* keep their textureInfos at the top of the extension object.
            for key in list(extension):
                if key.endswith("Texture"):
                    slots.append(_texture_slot(extension, key))

    for slot in slots:
        if slot is not None:
            yield slot
