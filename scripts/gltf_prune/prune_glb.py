#!/usr/bin/env python3
"""
prune_glb.py
============

Strip unused elements from `.glb` / `.gltf` assets and write the results to a
mirror directory tree.

Pipeline, per file:
1. Load the document (GLB container or plain JSON).
2. Remove unreferenced meshes, nodes, materials, accessors, buffer views and
   buffers (plus textures, samplers and images when asked), fixing every index.
3. Rebuild the GLB BIN chunk so bytes owned by removed buffer views are dropped.
4. Save to `{out_dir}/{same_relative_path}`.

Usage:
    python3 prune_glb.py assets/data \\
        --out-dir assets/pruned \\
        --kind mesh,node,material --kind accessor,bufferView,buffer \\
        --report assets/reports/prune_report.json \\
        --workers 4 --verbose
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, fields as dataclass_fields
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import glb_io
from gltf_kinds import DEFAULT_KINDS, PRUNE_ORDER, ElementKind, kind_from_name
from gltf_prune import PruneReport, prune_unused_elements


@dataclass
class PruneStats:
    files_total: int = 0
    written: int = 0
    unchanged: int = 0
    failed: int = 0
    elements_removed: int = 0
    bytes_in: int = 0
    bytes_out: int = 0
    removed_by_kind: Dict[str, int] = field(default_factory=dict)
    files: List[Dict] = field(default_factory=list)
    failures: List[Dict] = field(default_factory=list)


def merge_stats(target: PruneStats, source: PruneStats) -> None:
    """Merge *source* into *target*: ints are summed, lists extended, dicts summed per key."""
    for f in dataclass_fields(PruneStats):
        src_val = getattr(source, f.name)
        if isinstance(src_val, int):
            setattr(target, f.name, getattr(target, f.name) + src_val)
        elif isinstance(src_val, list):
            getattr(target, f.name).extend(src_val)
        elif isinstance(src_val, dict):
            dst = getattr(target, f.name)
            for key, value in src_val.items():
                dst[key] = dst.get(key, 0) + value


def parse_kind_values(raw_values: Sequence[str]) -> Tuple[FrozenSet[ElementKind], List[str]]:
    """Split repeated/comma-separated --kind values; returns (kinds, unknown names)."""
    kinds = set()
    unknown: List[str] = []
    for raw_value in raw_values:
        for token in raw_value.split(","):
            token = token.strip()
            if not token:
                continue
            kind = kind_from_name(token)
            if kind is None:
                unknown.append(token)
            else:
                kinds.add(kind)
    return frozenset(kinds), unknown


def parse_args(argv: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Remove unused glTF elements and write pruned copies preserving relative paths.",
    )
    parser.add_argument(
        "input_paths",
        type=Path,
        nargs="+",
        help="One or more .glb/.gltf files or directories (directories are searched recursively).",
    )
    parser.add_argument(
        "--out-dir",
        type=Path,
        default=Path("assets/pruned"),
        help="Directory for pruned assets (default: assets/pruned).",
    )
    parser.add_argument(
        "--kind",
        action="append",
        default=[],
        metavar="KIND",
        help=(
            "Element kind to prune: mesh, node, material, accessor, bufferView, buffer, "
            "texture, sampler, image. Can be repeated and accepts comma-separated values. "
            "Default: mesh,node,material,accessor,bufferView,buffer."
        ),
    )
    parser.add_argument(
        "--all-kinds",
        action="store_true",
        help="Prune every supported kind, including textures, samplers and images.",
    )
    parser.add_argument(
        "--keep-binary-layout",
        action="store_true",
        help="Do not rebuild the GLB BIN chunk after pruning (byte offsets stay as they were).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of parallel worker processes (default: 1).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be removed without writing any output.",
    )
    parser.add_argument(
        "--report",
        type=Path,
        default=None,
        help="Path for a JSON prune report.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    args = parser.parse_args(None if argv is None else list(argv))

    if args.workers < 1:
        parser.error("--workers must be >= 1")

    if args.all_kinds:
        args.kinds = frozenset(PRUNE_ORDER)
        args.unknown_kinds = []
    elif args.kind:
        args.kinds, args.unknown_kinds = parse_kind_values(args.kind)
    else:
        args.kinds = DEFAULT_KINDS
        args.unknown_kinds = []

    return args


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("PIL").setLevel(logging.INFO)


def _try_relative(path: Path, base: Path) -> Optional[Path]:
    try:
        return path.relative_to(base)
    except ValueError:
        return None


def resolve_rel_path(asset_path: Path, input_path: Path) -> Path:
    base = input_path if input_path.is_dir() else input_path.parent
    rel = _try_relative(asset_path, base)
    return rel if rel is not None else Path(asset_path.name)


def discover_documents(input_paths: Sequence[Path]) -> List[Tuple[Path, Path]]:
    """Return (absolute path, output-relative path) pairs; raises ValueError on bad input."""
    entries: List[Tuple[Path, Path]] = []
    seen: set[Path] = set()

    for input_path in input_paths:
        if not input_path.exists():
            raise ValueError(f"Input path does not exist: {input_path}")

        if input_path.is_file():
            if input_path.suffix.lower() not in glb_io.SUPPORTED_SUFFIXES:
                raise ValueError(f"Input file must be a .glb or .gltf: {input_path}")
            candidates = [input_path]
        elif input_path.is_dir():
            candidates = sorted(
                (p for p in input_path.rglob("*") if p.is_file() and p.suffix.lower() in glb_io.SUPPORTED_SUFFIXES),
                key=lambda p: p.as_posix().lower(),
            )
        else:
            raise ValueError(f"Input path must be a file or directory: {input_path}")

        for asset_path in candidates:
            if asset_path in seen:
                continue
            seen.add(asset_path)
            entries.append((asset_path, resolve_rel_path(asset_path, input_path)))

    return entries


def prune_document(
    document: glb_io.GltfDocument,
    kinds: FrozenSet[ElementKind],
    compact: bool,
) -> Tuple[PruneReport, List[Dict[str, Any]]]:
    """Prune ``document`` in place; returns the pass report and details of removed images."""
    payload = document.payload
    embedded = glb_io.embedded_buffer(payload) if document.is_binary else None

    image_details: List[Dict[str, Any]] = []
    if ElementKind.IMAGE in kinds and isinstance(payload.get("images"), list):
        image_details = [
            glb_io.describe_image(payload, document.binary_blob, index)
            for index in range(len(payload["images"]))
        ]

    report = PruneReport()
    prune_unused_elements(payload, kinds, report=report)

    if embedded is not None:
        if glb_io.embedded_buffer(payload) is not embedded:
            logging.debug("Embedded GLB buffer was unused, dropping BIN chunk")
            document.binary_blob = b""
        elif compact:
            document.binary_blob = glb_io.compact_binary(payload, document.binary_blob)

    removed_images: List[Dict[str, Any]] = []
    image_pass = report.passes.get(ElementKind.IMAGE)
    if image_pass is not None:
        removed_images = [image_details[index] for index in image_pass.removed]

    return report, removed_images


def prune_single_file(
    source: Path,
    rel_path: Path,
    out_dir: Path,
    kinds: FrozenSet[ElementKind],
    compact: bool,
    dry_run: bool,
    stats: PruneStats,
) -> None:
    stats.files_total += 1
    label = rel_path.as_posix()

    try:
        document = glb_io.load_document(source)
    except (OSError, ValueError) as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "load"})
        logging.error("Cannot load %s: %s", label, exc)
        return

    try:
        report, removed_images = prune_document(document, kinds, compact)
    except ValueError as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "prune"})
        logging.warning("Malformed document %s: %s", label, exc)
        return

    removed_counts = {kind: count for kind, count in report.removed_counts().items() if count}
    stats.elements_removed += report.total_removed
    for kind, count in removed_counts.items():
        stats.removed_by_kind[kind] = stats.removed_by_kind.get(kind, 0) + count

    entry: Dict[str, Any] = {"source": str(source), "passes": report.to_dict()}
    if removed_images:
        entry["removed_images"] = removed_images
    stats.files.append(entry)

    if dry_run:
        if removed_counts:
            summary = ", ".join(f"{kind}={count}" for kind, count in removed_counts.items())
            logging.info("[DRY-RUN] %s: would remove %s", label, summary)
        else:
            logging.info("[DRY-RUN] %s: nothing to remove", label)
        return

    out_path = out_dir / rel_path
    try:
        glb_io.save_document(out_path, document)
    except OSError as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "write"})
        logging.error("Cannot write %s: %s", out_path, exc)
        return

    size_in = source.stat().st_size
    size_out = out_path.stat().st_size
    stats.bytes_in += size_in
    stats.bytes_out += size_out
    if removed_counts:
        stats.written += 1
    else:
        stats.unchanged += 1
    logging.debug(
        "Pruned %s -> %s (%d removed, %d -> %d bytes)",
        label,
        out_path,
        report.total_removed,
        size_in,
        size_out,
    )


def _prune_worker(
    source: Path,
    rel_path: Path,
    out_dir: Path,
    kinds: FrozenSet[ElementKind],
    compact: bool,
    dry_run: bool,
) -> PruneStats:
    """Worker function for parallel pruning. Returns local stats."""
    stats = PruneStats()
    try:
        prune_single_file(source, rel_path, out_dir, kinds, compact, dry_run, stats)
    except Exception as exc:  # noqa: BLE001
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "worker"})
        logging.exception("Prune worker error for %s: %s", source, exc)
    return stats


def prune_all(
    entries: Sequence[Tuple[Path, Path]],
    out_dir: Path,
    kinds: FrozenSet[ElementKind],
    compact: bool,
    dry_run: bool,
    report_path: Optional[Path],
    workers: int = 1,
) -> PruneStats:
    stats = PruneStats()
    total = len(entries)
    start_time = time.time()

    if workers <= 1:
        for source, rel_path in entries:
            merge_stats(stats, _prune_worker(source, rel_path, out_dir, kinds, compact, dry_run))
    else:
        chunksize = max(1, total // (workers * 4))
        with ProcessPoolExecutor(max_workers=workers) as executor:
            for worker_stats in executor.map(
                _prune_worker,
                [src for src, _ in entries],
                [rel for _, rel in entries],
                [out_dir] * total,
                [kinds] * total,
                [compact] * total,
                [dry_run] * total,
                chunksize=chunksize,
            ):
                merge_stats(stats, worker_stats)

    elapsed = time.time() - start_time
    logging.info(
        "Prune complete in %.1fs: %d files, %d written, %d unchanged, %d failed, %d elements removed",
        elapsed,
        stats.files_total,
        stats.written,
        stats.unchanged,
        stats.failed,
        stats.elements_removed,
    )
    for kind in PRUNE_ORDER:
        count = stats.removed_by_kind.get(kind.value)
        if count:
            logging.info("  %s: %d removed", kind.collection, count)
    if stats.bytes_in:
        logging.info("Size: %d -> %d bytes", stats.bytes_in, stats.bytes_out)

    if report_path:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report = {
            "kinds": [kind.value for kind in PRUNE_ORDER if kind in kinds],
            "compact_binary": compact,
            "dry_run": dry_run,
            "files_total": stats.files_total,
            "written": stats.written,
            "unchanged": stats.unchanged,
            "failed": stats.failed,
            "elements_removed": stats.elements_removed,
            "removed_by_kind": stats.removed_by_kind,
            "bytes_in": stats.bytes_in,
            "bytes_out": stats.bytes_out,
            "files": stats.files,
            "failures": stats.failures,
        }
        report_path.write_text(json.dumps(report, indent=2))
        logging.info("Report written to %s", report_path)

    return stats


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    for name in args.unknown_kinds:
        logging.warning("Ignoring unknown element kind: %s", name)
    if not args.kinds:
        logging.error("No valid element kinds selected")
        return 2

    try:
        entries = discover_documents([path.resolve() for path in args.input_paths])
    except ValueError as exc:
        logging.error("%s", exc)
        return 2

    if not entries:
        logging.warning("No .glb/.gltf files found under provided input paths")
        return 0

    out_dir = args.out_dir.resolve()
    workers = min(args.workers, os.cpu_count() or 1, len(entries))
    logging.info("Found %d glTF file(s) (workers=%d)", len(entries), workers)
    logging.info("Pruning: %s", ", ".join(kind.value for kind in PRUNE_ORDER if kind in args.kinds))
    if args.dry_run:
        logging.info("Running in dry-run mode (no writes)")
    else:
        logging.info("Output dir: %s", out_dir)

    stats = prune_all(
        entries=entries,
        out_dir=out_dir,
        kinds=args.kinds,
        compact=not args.keep_binary_layout,
        dry_run=args.dry_run,
        report_path=args.report,
        workers=workers,
    )

    return 1 if stats.failed else 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
