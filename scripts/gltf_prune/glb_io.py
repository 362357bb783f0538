#!/usr/bin/env python3
"""
glb_io.py
=========

Reading and writing glTF 2.0 documents (binary `.glb` or JSON `.gltf`), plus
the binary-chunk housekeeping needed once buffer views have been pruned.
"""

from __future__ import annotations

import base64
import json
import struct
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import unquote

from PIL import Image, UnidentifiedImageError

import gltf_walk as walk

JSON_CHUNK_TYPE = 0x4E4F534A
BIN_CHUNK_TYPE = 0x004E4942
GLTF_MAGIC = 0x46546C67

GLB_SUFFIX = ".glb"
GLTF_SUFFIX = ".gltf"
SUPPORTED_SUFFIXES = (GLB_SUFFIX, GLTF_SUFFIX)


@dataclass
class GltfDocument:
    payload: Dict[str, Any]
    binary_blob: bytes = b""
    source_path: Optional[Path] = None

    @property
    def is_binary(self) -> bool:
        return self.source_path is not None and self.source_path.suffix.lower() == GLB_SUFFIX


def align4(value: int) -> int:
    return (value + 3) & ~3


def load_glb_payload(path: Path) -> Tuple[Dict[str, Any], bytes]:
    data = path.read_bytes()
    if len(data) < 20:
        raise ValueError("GLB too small")

    magic, version, total_length = struct.unpack_from("<III", data, 0)
    if magic != GLTF_MAGIC:
        raise ValueError("Invalid GLB magic")
    if version != 2:
        raise ValueError(f"Unsupported GLB version: {version}")
    if total_length > len(data):
        raise ValueError("GLB is truncated")

    offset = 12
    json_chunk: Optional[bytes] = None
    bin_chunk: bytes = b""

    while offset + 8 <= total_length:
        chunk_len, chunk_type = struct.unpack_from("<II", data, offset)
        offset += 8
        chunk_end = offset + chunk_len
        if chunk_end > len(data):
            raise ValueError("GLB chunk exceeds file size")

        chunk_data = data[offset:chunk_end]
        offset = chunk_end

        if chunk_type == JSON_CHUNK_TYPE and json_chunk is None:
            json_chunk = chunk_data
        elif chunk_type == BIN_CHUNK_TYPE and not bin_chunk:
            bin_chunk = chunk_data

    if json_chunk is None:
        raise ValueError("GLB missing JSON chunk")

    payload = json.loads(json_chunk.decode("utf-8").rstrip(" \t\r\n\x00"))
    if not isinstance(payload, dict):
        raise ValueError("GLB JSON root is not an object")

    return payload, bin_chunk


def build_glb(payload: Dict[str, Any], binary_blob: bytes) -> bytes:
    json_bytes = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    json_pad = align4(len(json_bytes)) - len(json_bytes)
    if json_pad:
        json_bytes += b" " * json_pad

    bin_pad = align4(len(binary_blob)) - len(binary_blob)
    if bin_pad:
        binary_blob += b"\x00" * bin_pad

    total_length = 12 + 8 + len(json_bytes)
    if binary_blob:
        total_length += 8 + len(binary_blob)

    out = bytearray()
    out += struct.pack("<III", GLTF_MAGIC, 2, total_length)
    out += struct.pack("<II", len(json_bytes), JSON_CHUNK_TYPE)
    out += json_bytes
    # No BIN chunk at all once the embedded buffer is gone.
    if binary_blob:
        out += struct.pack("<II", len(binary_blob), BIN_CHUNK_TYPE)
        out += binary_blob
    return bytes(out)


def load_document(path: Path) -> GltfDocument:
    suffix = path.suffix.lower()
    if suffix == GLB_SUFFIX:
        payload, blob = load_glb_payload(path)
        return GltfDocument(payload=payload, binary_blob=blob, source_path=path)
    if suffix == GLTF_SUFFIX:
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("glTF JSON root is not an object")
        return GltfDocument(payload=payload, source_path=path)
    raise ValueError(f"Unsupported glTF file type: {path.suffix}")


def save_document(path: Path, document: GltfDocument) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == GLB_SUFFIX:
        path.write_bytes(build_glb(document.payload, document.binary_blob))
        return
    path.write_text(json.dumps(document.payload, indent=2, ensure_ascii=False), encoding="utf-8")


# ---------------------------------------------------------------------------
# Embedded binary buffer
# ---------------------------------------------------------------------------

def embedded_buffer(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the buffer backed by the GLB BIN chunk (buffer 0 without a uri)."""
    buffer_list = payload.get("buffers")
    if not isinstance(buffer_list, list) or not buffer_list:
        return None
    first = buffer_list[0]
    if not isinstance(first, dict) or "uri" in first:
        return None
    return first


def compact_binary(payload: Dict[str, Any], binary_blob: bytes) -> bytes:
    """Rebuild the BIN chunk from the buffer views that still point at buffer 0.

    Each view keeps its offset modulo 4 so accessor alignment inside the
    buffer is unchanged. Views that covered the same byte range share it.
    """
    buffer = embedded_buffer(payload)
    if buffer is None:
        return binary_blob

    new_blob = bytearray()
    placed: Dict[Tuple[int, int], int] = {}

    for view_index, view in walk.buffer_views(payload):
        if view.get("buffer") != 0:
            continue
        byte_offset = int(view.get("byteOffset", 0))
        byte_length = int(view.get("byteLength", 0))
        if byte_offset < 0 or byte_length < 0:
            raise ValueError(f"bufferView[{view_index}] has invalid byte range")
        end = byte_offset + byte_length
        if end > len(binary_blob):
            raise ValueError(f"bufferView[{view_index}] exceeds BIN chunk")

        new_offset = placed.get((byte_offset, byte_length))
        if new_offset is None:
            new_offset = align4(len(new_blob)) + byte_offset % 4
            new_blob.extend(b"\x00" * (new_offset - len(new_blob)))
            new_blob.extend(binary_blob[byte_offset:end])
            placed[(byte_offset, byte_length)] = new_offset

        if new_offset or "byteOffset" in view:
            view["byteOffset"] = new_offset

    buffer["byteLength"] = len(new_blob)
    return bytes(new_blob)


# ---------------------------------------------------------------------------
# Image inspection (used for prune reports)
# ---------------------------------------------------------------------------

def detect_mime_from_image_bytes(data: bytes) -> Optional[str]:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"\xabKTX 20\xbb"):
        return "image/ktx2"
    return None


def decode_data_uri(uri: str) -> Tuple[bytes, Optional[str]]:
    # Format: data:[<mime>][;base64],<data>
    if not uri.startswith("data:"):
        raise ValueError("Not a data URI")

    comma = uri.find(",")
    if comma == -1:
        raise ValueError("Invalid data URI")

    header = uri[5:comma]
    data = uri[comma + 1 :]

    mime: Optional[str] = None
    is_base64 = False
    if header:
        parts = header.split(";")
        if parts and "/" in parts[0]:
            mime = parts[0]
        is_base64 = any(part.lower() == "base64" for part in parts[1:] if part)

    if is_base64:
        return base64.b64decode(data), mime
    return unquote(data).encode("utf-8"), mime


def _embedded_image_bytes(payload: Dict[str, Any], binary_blob: bytes, view_index: Any) -> Optional[bytes]:
    views = payload.get("bufferViews")
    if not isinstance(views, list) or not isinstance(view_index, int) or not 0 <= view_index < len(views):
        return None
    view = views[view_index]
    if not isinstance(view, dict) or view.get("buffer") != 0 or embedded_buffer(payload) is None:
        return None
    byte_offset = int(view.get("byteOffset", 0))
    byte_length = int(view.get("byteLength", 0))
    if byte_length <= 0 or byte_offset + byte_length > len(binary_blob):
        return None
    return binary_blob[byte_offset : byte_offset + byte_length]


def describe_image(payload: Dict[str, Any], binary_blob: bytes, image_index: int) -> Dict[str, Any]:
    """Summarize an image entry: where its bytes live and, when embedded, its pixel size."""
    image_list = payload.get("images")
    image = image_list[image_index] if isinstance(image_list, list) else None
    if not isinstance(image, dict):
        return {"index": image_index}

    info: Dict[str, Any] = {"index": image_index}
    if isinstance(image.get("name"), str):
        info["name"] = image["name"]
    mime = image.get("mimeType")

    raw: Optional[bytes] = None
    uri = image.get("uri")
    if "bufferView" in image:
        info["storage"] = "bufferView"
        raw = _embedded_image_bytes(payload, binary_blob, image.get("bufferView"))
    elif isinstance(uri, str) and uri.startswith("data:"):
        info["storage"] = "data_uri"
        try:
            raw, uri_mime = decode_data_uri(uri)
        except ValueError as exc:
            info["error"] = str(exc)
        else:
            mime = mime or uri_mime
    elif isinstance(uri, str):
        info["storage"] = "external_uri"
        info["uri"] = uri

    if raw:
        mime = mime or detect_mime_from_image_bytes(raw)
        info["byteLength"] = len(raw)
        try:
            with Image.open(BytesIO(raw)) as img:
                info["width"], info["height"] = img.size
                info["mode"] = img.mode
        except (UnidentifiedImageError, OSError) as exc:
            info["error"] = f"undecodable image: {exc}"

    if mime:
        info["mimeType"] = mime
    return info
