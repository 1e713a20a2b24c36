"""
Deterministic path construction for one subject run.

Every artifact name the pipeline reads or writes is produced here, from the
subject identifier and the fixed BIDS naming convention:

- ``sub-01``          -> relative path ``sub-01``, flat token ``sub-01``
- ``sub-01/ses-01``   -> relative path ``sub-01/ses-01``, flat token ``sub-01_ses-01``
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Tuple

from cordcenterline.errors import LayoutError

NIFTI_EXT = ".nii.gz"
REFERENCE_SUFFIX = "T2w"
LABELS_DERIVATIVES = ("derivatives", "labels")


def parse_subject(identifier: str) -> Tuple[str, Optional[str]]:
    """Split ``sub-XX[/ses-YY]`` into subject and optional session."""
    if not isinstance(identifier, str) or not identifier.strip():
        raise LayoutError("Subject identifier must be a non-empty string.")
    text = identifier.strip()
    if text.startswith("/"):
        raise LayoutError(f"Subject identifier must be relative: {identifier!r}")
    parts = PurePosixPath(text.rstrip("/")).parts
    if not parts or any(part in {".", ".."} for part in parts):
        raise LayoutError(f"Subject identifier contains an invalid path component: {identifier!r}")
    if len(parts) > 2:
        raise LayoutError(f"Subject identifier has too many components: {identifier!r}")
    session = parts[1] if len(parts) == 2 else None
    return parts[0], session


def strip_nifti_ext(name: str) -> str:
    for ext in (NIFTI_EXT, ".nii"):
        if name.endswith(ext):
            return name[: -len(ext)]
    return name


@dataclass(frozen=True)
class SubjectLayout:
    subject: str
    session: Optional[str]
    data_root: Path
    processed_root: Path

    @classmethod
    def from_identifier(cls, identifier: str, data_root: Path, processed_root: Path) -> "SubjectLayout":
        subject, session = parse_subject(identifier)
        return cls(
            subject=subject,
            session=session,
            data_root=Path(data_root),
            processed_root=Path(processed_root),
        )

    @property
    def identifier(self) -> str:
        """Identifier as passed by the batch runner (``sub-01/ses-01``)."""
        return str(self.relpath.as_posix())

    @property
    def relpath(self) -> PurePosixPath:
        if self.session:
            return PurePosixPath(self.subject, self.session)
        return PurePosixPath(self.subject)

    @property
    def flat(self) -> str:
        return self.identifier.replace("/", "_")

    def file_name(self, suffix: str, derivative: Optional[str] = None, ext: str = NIFTI_EXT) -> str:
        name = f"{self.flat}_{suffix}"
        if derivative:
            name = f"{name}_{derivative}"
        return f"{name}{ext}"

    # Source (read-only) tree

    @property
    def source_dir(self) -> Path:
        return self.data_root / self.relpath

    @property
    def source_reference(self) -> Path:
        return self.source_dir / "anat" / self.file_name(REFERENCE_SUFFIX)

    @property
    def seg_manual_path(self) -> Path:
        return self._labels_anat_dir(self.data_root) / self.file_name(REFERENCE_SUFFIX, "seg-manual")

    # Processing tree

    @property
    def subject_dir(self) -> Path:
        return self.processed_root / self.relpath

    @property
    def anat_dir(self) -> Path:
        return self.subject_dir / "anat"

    def image(self, suffix: str) -> Path:
        return self.anat_dir / self.file_name(suffix)

    @property
    def reference_image(self) -> Path:
        return self.image(REFERENCE_SUFFIX)

    @property
    def reference_raw(self) -> Path:
        return self.anat_dir / self.file_name(REFERENCE_SUFFIX, "raw")

    @property
    def working_seg(self) -> Path:
        return self.anat_dir / self.file_name(REFERENCE_SUFFIX, "seg")

    @property
    def working_centerline(self) -> Path:
        return self.anat_dir / self.file_name(REFERENCE_SUFFIX, "seg_centerline")

    @property
    def derivatives_anat_dir(self) -> Path:
        return self._labels_anat_dir(self.processed_root)

    @property
    def derivatives_centerline(self) -> Path:
        return self.derivatives_anat_dir / self.file_name(REFERENCE_SUFFIX, "seg_centerline")

    def registered(self, contrast_path: Path) -> Path:
        """``<contrast>2<flat>_T2w.nii.gz`` next to the contrast file."""
        stem = strip_nifti_ext(contrast_path.name)
        target = strip_nifti_ext(self.reference_image.name)
        return contrast_path.parent / f"{stem}2{target}{NIFTI_EXT}"

    def relative(self, path: Optional[Path]) -> Optional[str]:
        if path is None:
            return None
        try:
            return str(path.relative_to(self.processed_root))
        except ValueError:
            return str(path)

    def _labels_anat_dir(self, root: Path) -> Path:
        return root.joinpath(*LABELS_DERIVATIVES) / self.relpath / "anat"
