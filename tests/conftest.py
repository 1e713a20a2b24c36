from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import nibabel as nib
import numpy as np
import pytest

from cordcenterline.config import RunPaths
from cordcenterline.errors import ToolError
from cordcenterline.toolbox import Toolbox

RESAMPLED_AFFINE = np.diag([0.8, 0.8, 0.8, 1.0])


def make_nifti(path: Path, shape: tuple[int, ...], affine: Optional[np.ndarray] = None, value: float = 1.0) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = np.full(shape, value, dtype=np.float32)
    img = nib.Nifti1Image(data, affine=np.eye(4) if affine is None else affine)
    nib.save(img, str(path))
    return path


def make_dataset(
    data_root: Path,
    subject: str,
    with_seg: bool = True,
    contrasts: Optional[dict[str, tuple[int, ...]]] = None,
    extra_files: tuple[str, ...] = (),
) -> None:
    """Write a minimal BIDS tree for one subject."""
    for name, content in (
        ("participants.tsv", "participant_id\n"),
        ("participants.json", "{}"),
        ("dataset_description.json", json.dumps({"Name": "test", "BIDSVersion": "1.8.0"})),
    ):
        if not (data_root / name).exists():
            (data_root / name).parent.mkdir(parents=True, exist_ok=True)
            (data_root / name).write_text(content, encoding="utf-8")

    flat = subject.replace("/", "_")
    anat = data_root / subject / "anat"
    make_nifti(anat / f"{flat}_T2w.nii.gz", (8, 8, 8))
    (anat / f"{flat}_T2w.json").write_text("{}", encoding="utf-8")
    for suffix, shape in (contrasts or {}).items():
        make_nifti(anat / f"{flat}_{suffix}.nii.gz", shape)
    for name in extra_files:
        target = data_root / subject / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text("x", encoding="utf-8")

    if with_seg:
        make_nifti(
            data_root / "derivatives" / "labels" / subject / "anat" / f"{flat}_T2w_seg-manual.nii.gz",
            (10, 10, 10),
            affine=RESAMPLED_AFFINE,
        )


class FakeToolbox(Toolbox):
    """Writes plausible NIfTI outputs instead of calling SCT."""

    def __init__(self, fail_on: Optional[str] = None):
        self.calls: list[tuple[str, dict]] = []
        self.fail_on = fail_on

    def _record(self, name: str, **kwargs) -> None:
        self.calls.append((name, kwargs))
        if name == self.fail_on:
            raise ToolError([f"sct_{name}"], f"{name}: simulated crash", returncode=1)

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def check_dependencies(self) -> str:
        self._record("check_dependencies")
        return "SCT dependencies OK"

    def version(self) -> Optional[str]:
        self._record("version")
        return "6.5"

    def fit_centerline(self, seg, output, method, algo, smooth, qc_dir, qc_subject):
        self._record(
            "fit_centerline", seg=seg, output=output, method=method, algo=algo, smooth=smooth, qc_subject=qc_subject
        )
        img = nib.load(str(seg))
        data = np.zeros(img.shape, dtype=np.float32)
        data[img.shape[0] // 2, img.shape[1] // 2, :] = 1
        nib.save(nib.Nifti1Image(data, img.affine), str(output))
        return output

    def set_orientation(self, source, dest, orientation):
        self._record("set_orientation", source=source, dest=dest, orientation=orientation)
        nib.save(nib.load(str(source)), str(dest))
        return dest

    def resample(self, source, dest, mm):
        self._record("resample", source=source, dest=dest, mm=mm)
        img = nib.load(str(source))
        target = [float(v) for v in mm.split("x")]
        zooms = img.header.get_zooms()[:3]
        shape = tuple(int(round(n * z / t)) for n, z, t in zip(img.shape[:3], zooms, target))
        affine = np.diag([*target, 1.0])
        nib.save(nib.Nifti1Image(np.zeros(shape, dtype=np.float32), affine), str(dest))
        return dest

    def rms_across_time(self, source, dest):
        self._record("rms_across_time", source=source, dest=dest)
        img = nib.load(str(source))
        data = np.sqrt(np.mean(np.asarray(img.dataobj, dtype=np.float32) ** 2, axis=3))
        nib.save(nib.Nifti1Image(data, img.affine), str(dest))
        return dest

    def register_identity(self, source, dest_ref, output, interpolation):
        self._record("register_identity", source=source, dest_ref=dest_ref, output=output, interpolation=interpolation)
        ref = nib.load(str(dest_ref))
        nib.save(nib.Nifti1Image(np.zeros(ref.shape[:3], dtype=np.float32), ref.affine), str(output))
        return output

    def qc_overlay(self, image, seg, process, qc_dir, qc_subject):
        self._record("qc_overlay", image=image, seg=seg, process=process, qc_subject=qc_subject)


@pytest.fixture
def run_paths(tmp_path: Path) -> RunPaths:
    paths = {}
    for key in ("data", "processed", "results", "log", "qc"):
        paths[key] = tmp_path / key
        paths[key].mkdir()
    return RunPaths(**paths)


@pytest.fixture
def toolbox() -> FakeToolbox:
    return FakeToolbox()
