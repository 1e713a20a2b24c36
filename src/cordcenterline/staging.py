"""
Staging: copy dataset metadata and the subject's source images into the
processing tree. Files are copied, never moved; the source dataset is not
modified.
"""

from __future__ import annotations

import logging
from pathlib import Path
from shutil import copy2
from typing import Iterable

from cordcenterline.config import PipelinePolicy
from cordcenterline.errors import StagingError
from cordcenterline.layout import REFERENCE_SUFFIX, SubjectLayout

logger = logging.getLogger(__name__)


def stage_subject(layout: SubjectLayout, policy: PipelinePolicy) -> dict:
    """
    Stage one subject and return a record of what was copied.

    Raises:
        StagingError: when a metadata file, the subject directory or the
            reference image is missing from the source dataset.
    """
    copied_metadata = stage_metadata(layout.data_root, layout.processed_root, policy.metadata_files)
    if layout.source_dir.is_dir() and not layout.source_reference.is_file():
        # A processed T2w left by an earlier run must not stand in for the acquisition.
        raise StagingError(f"Reference image not found in source dataset: {layout.source_reference}")

    suffixes = [REFERENCE_SUFFIX, *(c.suffix for c in policy.contrasts)]
    staged = stage_subject_tree(layout, suffixes)

    return {
        "status": "PASS",
        "metadata_copied": copied_metadata,
        "files_staged": [layout.relative(path) for path in staged],
    }


def stage_metadata(data_root: Path, processed_root: Path, names: Iterable[str]) -> list[str]:
    """Copy dataset-level files that are not yet present in the processing root."""
    copied: list[str] = []
    for name in names:
        dest = processed_root / name
        if dest.exists():
            continue
        source = data_root / name
        if not source.is_file():
            raise StagingError(f"Required dataset file not found: {source}")
        _copy_file(source, dest)
        copied.append(name)
    return copied


def stage_subject_tree(layout: SubjectLayout, suffixes: Iterable[str]) -> list[Path]:
    """
    Copy ``<data>/<subject>`` into ``<processed>/<subject>``, keeping the session
    sub-path and only files belonging to the given contrast suffixes. Existing
    destination files are overwritten.
    """
    source_dir = layout.source_dir
    if not source_dir.is_dir():
        raise StagingError(f"Subject directory not found: {source_dir}")

    prefixes = tuple(f"{layout.flat}_{suffix}." for suffix in suffixes)
    staged: list[Path] = []
    for source in sorted(source_dir.rglob("*")):
        if not source.is_file() or not source.name.startswith(prefixes):
            continue
        dest = layout.subject_dir / source.relative_to(source_dir)
        _copy_file(source, dest)
        staged.append(dest)

    logger.info("Staged %d file(s) for %s", len(staged), layout.identifier)
    return staged


def _copy_file(source: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    copy2(source, dest)
