"""
Archive extraction and result folder assembly.

Moves are done with os.rename / shutil.move and never overwrite: a name
collision gets a numeric suffix instead.
"""

import logging
import os
import shutil
import zipfile
from pathlib import Path
from typing import List

from .errors import ArchiveExtractionError

logger = logging.getLogger(__name__)


MODEL_EXTENSIONS = {".glb", ".gltf", ".obj", ".mtl", ".fbx", ".ply", ".stl", ".usdz", ".3mf"}


def unique_destination(path: Path) -> Path:
    """
    First free variant of ``path``: name.ext, name_1.ext, name_2.ext, ...
    """
    if not path.exists():
        return path
    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


def extract_archive(archive: Path, destination: Path) -> List[Path]:
    """
    Extract ``archive`` into ``destination``.

    Members that would land outside the destination (absolute paths or
    ``..`` components) are skipped with a warning.

    Returns:
        Paths of the extracted files

    Raises:
        ArchiveExtractionError: If the archive cannot be read
    """
    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()
    extracted = []

    try:
        with zipfile.ZipFile(archive) as zf:
            for member in zf.infolist():
                target = (root / member.filename).resolve()
                if target != root and root not in target.parents:
                    logger.warning(
                        f"Skipping archive member outside destination: {member.filename} ({archive.name})"
                    )
                    continue
                if member.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                zf.extract(member, root)
                extracted.append(target)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as e:
        raise ArchiveExtractionError(archive.name, str(e)) from e

    logger.info(f"Extracted {len(extracted)} file(s) from {archive.name} into {destination}")
    return extracted


def flatten_models(destination: Path) -> List[Path]:
    """
    Move model files from nested subfolders up to ``destination``.

    Directories left empty afterwards are removed best-effort.

    Returns:
        New paths of the moved files
    """
    moved = []
    nested = [
        p for p in destination.rglob("*")
        if p.is_file() and p.parent != destination and p.suffix.lower() in MODEL_EXTENSIONS
    ]
    for source in sorted(nested):
        target = unique_destination(destination / source.name)
        shutil.move(str(source), str(target))
        moved.append(target)
        logger.debug(f"Flattened {source.relative_to(destination)} -> {target.name}")

    # Deepest first so parents empty out before they are visited
    subdirs = sorted(
        (p for p in destination.rglob("*") if p.is_dir()),
        key=lambda p: len(p.parts),
        reverse=True,
    )
    for subdir in subdirs:
        try:
            os.rmdir(subdir)
        except OSError:
            pass  # Not empty

    return moved


def attach_sidecar(image: Path, destination: Path) -> Path:
    """Move a screenshot into the result folder."""
    target = unique_destination(destination / image.name)
    shutil.move(str(image), str(target))
    logger.info(f"Attached screenshot {image.name} to {destination.name}")
    return target
