#!/usr/bin/env python3
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

from gltf_errors import MalformedReferenceError
from gltf_kinds import ElementKind
from gltf_reindex import remove_element
import gltf_walk as walk


class RemoveAccessorTests(unittest.TestCase):
    def test_references_are_cleared_decremented_or_kept(self) -> None:
        gltf = {
            "accessors": [{"name": f"a{i}"} for i in range(4)],
            "meshes": [
                {
                    "primitives": [
                        {
                            "attributes": {"POSITION": 0, "NORMAL": 2},
                            "indices": 1,
                            "targets": [{"POSITION": 2}],
                        }
                    ]
                }
            ],
            "skins": [{"inverseBindMatrices": 3, "joints": [0]}],
            "animations": [{"samplers": [{"input": 1, "output": 3}], "channels": []}],
        }

        remove_element(gltf, ElementKind.ACCESSOR, 1)

        self.assertEqual([a["name"] for a in gltf["accessors"]], ["a0", "a2", "a3"])
        primitive = gltf["meshes"][0]["primitives"][0]
        self.assertEqual(primitive["attributes"], {"POSITION": 0, "NORMAL": 1})
        self.assertNotIn("indices", primitive)
        self.assertEqual(primitive["targets"], [{"POSITION": 1}])
        self.assertEqual(gltf["skins"][0]["inverseBindMatrices"], 2)
        self.assertEqual(gltf["animations"][0]["samplers"][0], {"output": 2})

    def test_instancing_attributes_shift_only_when_extension_used(self) -> None:
        def document() -> dict:
            return {
                "accessors": [{}, {}, {}],
                "nodes": [{"extensions": {walk.EXT_MESH_GPU_INSTANCING: {"attributes": {"TRANSLATION": 2, "SCALE": 1}}}}],
            }

        with_extension = document()
        with_extension["extensionsUsed"] = [walk.EXT_MESH_GPU_INSTANCING]
        remove_element(with_extension, ElementKind.ACCESSOR, 0)
        attributes = with_extension["nodes"][0]["extensions"][walk.EXT_MESH_GPU_INSTANCING]["attributes"]
        self.assertEqual(attributes, {"TRANSLATION": 1, "SCALE": 0})

        without_extension = document()
        remove_element(without_extension, ElementKind.ACCESSOR, 0)
        attributes = without_extension["nodes"][0]["extensions"][walk.EXT_MESH_GPU_INSTANCING]["attributes"]
        self.assertEqual(attributes, {"TRANSLATION": 2, "SCALE": 1})


class RemoveNodeTests(unittest.TestCase):
    def test_node_lists_are_filtered_and_shifted(self) -> None:
        gltf = {
            "nodes": [{"children": [1, 2]}, {}, {"children": [1]}, {}],
            "scenes": [{"nodes": [0, 3]}],
            "skins": [{"skeleton": 3, "joints": [0, 3]}],
            "animations": [{"samplers": [], "channels": [{"sampler": 0, "target": {"node": 3, "path": "scale"}}]}],
        }

        remove_element(gltf, ElementKind.NODE, 1)

        self.assertEqual(gltf["nodes"], [{"children": [1]}, {}, {}])
        self.assertEqual(gltf["scenes"][0]["nodes"], [0, 2])
        self.assertEqual(gltf["skins"][0], {"skeleton": 2, "joints": [0, 2]})
        self.assertEqual(gltf["animations"][0]["channels"][0]["target"], {"node": 2, "path": "scale"})

    def test_scene_losing_its_last_root_drops_the_array(self) -> None:
        gltf = {"nodes": [{}], "scenes": [{"name": "s", "nodes": [0]}]}
        remove_element(gltf, ElementKind.NODE, 0)
        self.assertEqual(gltf, {"nodes": [], "scenes": [{"name": "s"}]})

    def test_skin_joints_keep_their_positions(self) -> None:
        gltf = {"nodes": [{}, {}, {}, {}], "skins": [{"joints": [0, 1, 3]}]}
        remove_element(gltf, ElementKind.NODE, 1)
        self.assertEqual(gltf["skins"][0]["joints"], [0, 1, 2])

    def test_technique_uniform_node_is_shifted(self) -> None:
        gltf = {
            "nodes": [{}, {}],
            "extensions": {walk.KHR_TECHNIQUES_WEBGL: {"techniques": [{"uniforms": {"u": {"node": 1}}}]}},
        }
        remove_element(gltf, ElementKind.NODE, 0)
        uniform = gltf["extensions"][walk.KHR_TECHNIQUES_WEBGL]["techniques"][0]["uniforms"]["u"]
        self.assertEqual(uniform, {"node": 0})


class RemoveOtherKindsTests(unittest.TestCase):
    def test_removed_mesh_reference_is_deleted_from_node(self) -> None:
        gltf = {"meshes": [{}, {}, {}], "nodes": [{"mesh": 0}, {"mesh": 1}, {"mesh": 2}]}
        remove_element(gltf, ElementKind.MESH, 1)
        self.assertEqual(gltf["nodes"], [{"mesh": 0}, {}, {"mesh": 1}])

    def test_material_texture_slots(self) -> None:
        gltf = {
            "textures": [{}, {}, {}],
            "materials": [
                {
                    "pbrMetallicRoughness": {"baseColorTexture": {"index": 0}},
                    "normalTexture": {"index": 1, "scale": 0.5},
                    "extensions": {"KHR_materials_clearcoat": {"clearcoatTexture": {"index": 2}}},
                }
            ],
        }
        remove_element(gltf, ElementKind.TEXTURE, 1)
        material = gltf["materials"][0]
        self.assertEqual(material["pbrMetallicRoughness"]["baseColorTexture"], {"index": 0})
        self.assertNotIn("normalTexture", material)
        self.assertEqual(material["extensions"]["KHR_materials_clearcoat"]["clearcoatTexture"], {"index": 1})

    def test_feature_metadata_textures_and_buffer_views(self) -> None:
        gltf = {
            "textures": [{}, {}],
            "bufferViews": [{}, {}, {}],
            "extensionsUsed": [walk.EXT_FEATURE_METADATA],
            "extensions": {
                walk.EXT_FEATURE_METADATA: {
                    "featureTables": {"t": {"properties": {"p": {"bufferView": 2, "arrayOffsetBufferView": 1}}}},
                    "featureTextures": {"ft": {"properties": {"q": {"texture": {"index": 1}}}}},
                }
            },
            "meshes": [
                {
                    "primitives": [
                        {
                            "attributes": {},
                            "extensions": {
                                walk.EXT_FEATURE_METADATA: {
                                    "featureIdTextures": [{"featureIds": {"texture": {"index": 1}}}]
                                }
                            },
                        }
                    ]
                }
            ],
        }

        remove_element(gltf, ElementKind.TEXTURE, 0)
        remove_element(gltf, ElementKind.BUFFER_VIEW, 0)

        metadata = gltf["extensions"][walk.EXT_FEATURE_METADATA]
        self.assertEqual(metadata["featureTextures"]["ft"]["properties"]["q"]["texture"], {"index": 0})
        self.assertEqual(
            metadata["featureTables"]["t"]["properties"]["p"],
            {"bufferView": 1, "arrayOffsetBufferView": 0},
        )
        feature_ids = gltf["meshes"][0]["primitives"][0]["extensions"][walk.EXT_FEATURE_METADATA]["featureIdTextures"][0]
        self.assertEqual(feature_ids["featureIds"]["texture"], {"index": 0})

    def test_draco_buffer_view_requires_extension(self) -> None:
        def document() -> dict:
            return {
                "bufferViews": [{}, {}, {}],
                "meshes": [
                    {"primitives": [{"attributes": {}, "extensions": {walk.KHR_DRACO_MESH_COMPRESSION: {"bufferView": 2}}}]}
                ],
            }

        used = document()
        used["extensionsUsed"] = [walk.KHR_DRACO_MESH_COMPRESSION]
        remove_element(used, ElementKind.BUFFER_VIEW, 0)
        self.assertEqual(
            used["meshes"][0]["primitives"][0]["extensions"][walk.KHR_DRACO_MESH_COMPRESSION]["bufferView"], 1
        )

        unused = document()
        remove_element(unused, ElementKind.BUFFER_VIEW, 0)
        self.assertEqual(
            unused["meshes"][0]["primitives"][0]["extensions"][walk.KHR_DRACO_MESH_COMPRESSION]["bufferView"], 2
        )

    def test_buffer_view_sites_on_accessors_images_and_shaders(self) -> None:
        gltf = {
            "bufferViews": [{}, {}, {}, {}],
            "accessors": [
                {
                    "bufferView": 3,
                    "sparse": {
                        "count": 1,
                        "indices": {"bufferView": 2, "componentType": 5123},
                        "values": {"bufferView": 0},
                    },
                }
            ],
            "images": [{"bufferView": 2, "mimeType": "image/png"}, {"uri": "wall.png"}],
            "shaders": [{"bufferView": 3, "type": 35632}],
        }

        remove_element(gltf, ElementKind.BUFFER_VIEW, 0)

        accessor = gltf["accessors"][0]
        self.assertEqual(accessor["bufferView"], 2)
        self.assertEqual(accessor["sparse"]["indices"], {"bufferView": 1, "componentType": 5123})
        self.assertEqual(accessor["sparse"]["values"], {})
        self.assertEqual(gltf["images"], [{"bufferView": 1, "mimeType": "image/png"}, {"uri": "wall.png"}])
        self.assertEqual(gltf["shaders"], [{"bufferView": 2, "type": 35632}])

    def test_technique_extension_shaders_are_shifted(self) -> None:
        gltf = {
            "bufferViews": [{}, {}],
            "extensions": {walk.KHR_TECHNIQUES_WEBGL: {"shaders": [{"bufferView": 1}], "techniques": []}},
        }
        remove_element(gltf, ElementKind.BUFFER_VIEW, 0)
        self.assertEqual(gltf["extensions"][walk.KHR_TECHNIQUES_WEBGL]["shaders"], [{"bufferView": 0}])

    def test_basisu_source_is_shifted_unless_webp_wins(self) -> None:
        gltf = {
            "images": [{}, {}, {}],
            "textures": [
                {"source": 0, "extensions": {"KHR_texture_basisu": {"source": 2}}},
                {"extensions": {"EXT_texture_webp": {"source": 2}, "KHR_texture_basisu": {"source": 2}}},
            ],
        }

        remove_element(gltf, ElementKind.IMAGE, 1)

        self.assertEqual(gltf["textures"][0], {"source": 0, "extensions": {"KHR_texture_basisu": {"source": 1}}})
        # Only the preferred variant is tracked; the other one is left as it was.
        self.assertEqual(
            gltf["textures"][1],
            {"extensions": {"EXT_texture_webp": {"source": 1}, "KHR_texture_basisu": {"source": 2}}},
        )

    def test_image_sources_including_webp_variant(self) -> None:
        gltf = {
            "images": [{}, {}, {}],
            "textures": [{"source": 0, "extensions": {"EXT_texture_webp": {"source": 2}}}],
        }
        remove_element(gltf, ElementKind.IMAGE, 1)
        self.assertEqual(gltf["textures"][0], {"source": 0, "extensions": {"EXT_texture_webp": {"source": 1}}})

    def test_sampler_buffer_and_material(self) -> None:
        gltf = {
            "samplers": [{}, {}],
            "textures": [{"sampler": 1}, {"sampler": 0}],
            "buffers": [{}, {}],
            "bufferViews": [{"buffer": 1}],
            "materials": [{}, {}],
            "meshes": [{"primitives": [{"attributes": {}, "material": 1}]}],
        }
        remove_element(gltf, ElementKind.SAMPLER, 0)
        remove_element(gltf, ElementKind.BUFFER, 0)
        remove_element(gltf, ElementKind.MATERIAL, 0)
        self.assertEqual(gltf["textures"], [{"sampler": 0}, {}])
        self.assertEqual(gltf["bufferViews"], [{"buffer": 0}])
        self.assertEqual(gltf["meshes"][0]["primitives"][0]["material"], 0)


class RemoveBoundsTests(unittest.TestCase):
    def test_empty_or_missing_collection_is_a_no_op(self) -> None:
        gltf = {"accessors": []}
        remove_element(gltf, ElementKind.ACCESSOR, 0)
        remove_element(gltf, ElementKind.MESH, 3)
        self.assertEqual(gltf, {"accessors": []})

    def test_index_out_of_range_raises(self) -> None:
        gltf = {"accessors": [{}]}
        with self.assertRaises(MalformedReferenceError):
            remove_element(gltf, ElementKind.ACCESSOR, 1)
        self.assertEqual(gltf, {"accessors": [{}]})


if __name__ == "__main__":
    unittest.main()
