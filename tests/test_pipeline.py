from __future__ import annotations

import nibabel as nib
import numpy as np

from cordcenterline import errorlog
from cordcenterline.pipeline import check_subject, run_subject

from conftest import FakeToolbox, make_dataset


def _registered_files(run_paths):
    return sorted(p.name for p in run_paths.processed.rglob("*2sub-*_T2w.nii.gz"))


def test_subject_with_segmentation_and_no_contrasts(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-01")

    result = run_subject("sub-01", run_paths, toolbox=toolbox)

    assert result.status == "PASS"
    assert result.failure_message is None
    anat = run_paths.processed / "sub-01" / "anat"
    assert (run_paths.processed / "derivatives" / "labels" / "sub-01" / "anat" / "sub-01_T2w_seg_centerline.nii.gz").exists()
    assert np.allclose(nib.load(str(anat / "sub-01_T2w.nii.gz")).header.get_zooms()[:3], 0.8)
    assert (anat / "sub-01_T2w_raw.nii.gz").exists()
    assert errorlog.read_lines(run_paths.error_log) == []
    assert _registered_files(run_paths) == []
    assert toolbox.names()[0] == "check_dependencies"
    assert toolbox.names()[-1] == "version"


def test_subject_without_segmentation_but_with_stir(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-02", with_seg=False, contrasts={"STIR": (8, 8, 8)})

    result = run_subject("sub-02", run_paths, toolbox=toolbox)

    assert result.status == "WARN"
    lines = errorlog.read_lines(run_paths.error_log)
    assert len(lines) == 1
    assert lines[0].startswith("sub-02/")
    assert lines[0].endswith("sub-02_T2w_seg-manual.nii.gz does not exist")
    assert _registered_files(run_paths) == []
    assert not (run_paths.processed / "sub-02" / "anat" / "sub-02_T2w_raw.nii.gz").exists()
    assert result.record["stages"]["coregistration"]["status"] == "SKIP"


def test_rerun_without_segmentation_appends_again(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-02", with_seg=False)
    run_subject("sub-02", run_paths, toolbox=toolbox)
    run_subject("sub-02", run_paths, toolbox=toolbox)
    assert len(errorlog.read_lines(run_paths.error_log)) == 2


def test_rerun_with_segmentation_recomputes(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-01", contrasts={"STIR": (8, 8, 8)})
    assert run_subject("sub-01", run_paths, toolbox=toolbox).status == "PASS"

    second = FakeToolbox()
    assert run_subject("sub-01", run_paths, toolbox=second).status == "PASS"
    assert "fit_centerline" in second.names()
    assert check_subject("sub-01", run_paths).status == "PASS"


def test_all_contrasts_registered_on_reference_grid(run_paths, toolbox):
    contrasts = {
        "STIR": (8, 8, 8),
        "PSIR": (8, 8, 8),
        "T2star": (8, 8, 8, 4),
        "acq-MT_MTS": (8, 8, 8),
        "acq-T1w_MTS": (8, 8, 8),
        "acq-MTon_MTS": (8, 8, 8),
        "acq-MToff_MTS": (8, 8, 8),
    }
    make_dataset(run_paths.data, "sub-03/ses-01", contrasts=contrasts)

    result = run_subject("sub-03/ses-01", run_paths, toolbox=toolbox)

    assert result.status == "PASS"
    assert len(_registered_files(run_paths)) == 7
    assert "sub-03_ses-01_T2star2sub-03_ses-01_T2w.nii.gz" in _registered_files(run_paths)
    assert check_subject("sub-03/ses-01", run_paths).status == "PASS"


def test_tool_failure_aborts_the_run(run_paths):
    make_dataset(run_paths.data, "sub-01", contrasts={"STIR": (8, 8, 8)})
    toolbox = FakeToolbox(fail_on="resample")

    result = run_subject("sub-01", run_paths, toolbox=toolbox)

    assert result.status == "FAIL"
    assert "simulated crash" in (result.tool_output or "")
    assert "register_identity" not in toolbox.names()
    assert "version" not in toolbox.names()
    assert errorlog.read_lines(run_paths.error_log) == []


def test_staging_failure_aborts_before_any_tool(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-01")
    (run_paths.data / "dataset_description.json").unlink()

    result = run_subject("sub-01", run_paths, toolbox=toolbox)

    assert result.status == "FAIL"
    assert "dataset_description.json" in result.failure_message
    assert toolbox.names() == ["check_dependencies"]


def test_invalid_subject_identifier(run_paths, toolbox):
    result = run_subject("../sub-01", run_paths, toolbox=toolbox)
    assert result.status == "FAIL"
    assert toolbox.calls == []


def test_run_records_are_appended(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-01")
    make_dataset(run_paths.data, "sub-02", with_seg=False)
    run_subject("sub-01", run_paths, toolbox=toolbox)
    run_subject("sub-02", run_paths, toolbox=toolbox)
    run_subject("sub-09", run_paths, toolbox=toolbox)

    records = errorlog.read_jsonl(run_paths.runs_log)
    assert [(r["subject"], r["status"]) for r in records] == [
        ("sub-01", "PASS"),
        ("sub-02", "WARN"),
        ("sub-09", "FAIL"),
    ]
    first = records[0]
    assert first["stages"]["centerline"]["centerline_derivative"] == (
        "derivatives/labels/sub-01/anat/sub-01_T2w_seg_centerline.nii.gz"
    )
    assert first["summary"]["sct_version"] == "6.5"
    assert first["summary"]["duration"].endswith("sec")


def test_check_without_segmentation_requires_error_log_line(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-02", with_seg=False)
    assert check_subject("sub-02", run_paths).status == "FAIL"
    run_subject("sub-02", run_paths, toolbox=toolbox)
    assert check_subject("sub-02", run_paths).status == "WARN"


def test_check_detects_missing_outputs(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-01", contrasts={"STIR": (8, 8, 8)})
    assert check_subject("sub-01", run_paths).status == "FAIL"

    run_subject("sub-01", run_paths, toolbox=toolbox)
    assert check_subject("sub-01", run_paths).status == "PASS"

    (run_paths.processed / "sub-01" / "anat" / "sub-01_STIR2sub-01_T2w.nii.gz").unlink()
    result = check_subject("sub-01", run_paths)
    assert result.status == "FAIL"
    assert "missing registered stir" in result.failure_message


def test_rerun_after_source_reference_removed_fails(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-01")
    assert run_subject("sub-01", run_paths, toolbox=toolbox).status == "PASS"
    raw = run_paths.processed / "sub-01" / "anat" / "sub-01_T2w_raw.nii.gz"
    raw_shape = nib.load(str(raw)).shape

    (run_paths.data / "sub-01" / "anat" / "sub-01_T2w.nii.gz").unlink()
    second = FakeToolbox()
    result = run_subject("sub-01", run_paths, toolbox=second)

    assert result.status == "FAIL"
    assert "Reference image" in result.failure_message
    assert second.names() == ["check_dependencies"]
    assert nib.load(str(raw)).shape == raw_shape


def test_unreadable_contrast_image_fails_with_run_record(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-01")
    (run_paths.data / "sub-01" / "anat" / "sub-01_T2star.nii.gz").write_bytes(b"not an image")

    result = run_subject("sub-01", run_paths, toolbox=toolbox)

    assert result.status == "FAIL"
    assert "ImageFileError" in result.failure_message
    assert "register_identity" not in toolbox.names()
    records = errorlog.read_jsonl(run_paths.runs_log)
    assert [(r["subject"], r["status"]) for r in records] == [("sub-01", "FAIL")]


def test_check_without_segmentation_rejects_stale_outputs(run_paths, toolbox):
    make_dataset(run_paths.data, "sub-02", with_seg=False, contrasts={"STIR": (8, 8, 8)})
    run_subject("sub-02", run_paths, toolbox=toolbox)
    assert check_subject("sub-02", run_paths).status == "WARN"

    stale = run_paths.processed / "sub-02" / "anat" / "sub-02_STIR2sub-02_T2w.nii.gz"
    stale.write_bytes(b"")
    result = check_subject("sub-02", run_paths)
    assert result.status == "FAIL"
    assert str(stale) in result.failure_message

    stale.unlink()
    raw = run_paths.processed / "sub-02" / "anat" / "sub-02_T2w_raw.nii.gz"
    raw.write_bytes(b"")
    assert check_subject("sub-02", run_paths).status == "FAIL"
