"""
Centerline from the manually corrected T2w cord segmentation.

The manual segmentation was drawn on the reoriented and resampled T2w image,
so once the centerline is fitted the reference image gets the same
preprocessing and keeps its canonical name; the acquisition is kept as
``*_T2w_raw.nii.gz``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from shutil import copy2

from cordcenterline import errorlog
from cordcenterline.config import PipelinePolicy, RunPaths
from cordcenterline.layout import SubjectLayout, strip_nifti_ext
from cordcenterline.toolbox import Toolbox

logger = logging.getLogger(__name__)


def run_centerline_stage(
    layout: SubjectLayout,
    paths: RunPaths,
    policy: PipelinePolicy,
    toolbox: Toolbox,
) -> dict:
    seg_manual = layout.seg_manual_path
    if not seg_manual.is_file():
        message = missing_segmentation_line(layout)
        errorlog.append_line(paths.error_log, message)
        logger.warning(message)
        return {"status": "SKIP", "reason": "manual segmentation missing", "expected": str(seg_manual)}

    tools = policy.tools

    # Work on a copy so the derivatives tree is never altered.
    seg = layout.working_seg
    seg.parent.mkdir(parents=True, exist_ok=True)
    copy2(seg_manual, seg)

    centerline = toolbox.fit_centerline(
        seg,
        layout.working_centerline,
        method=tools.centerline_method,
        algo=tools.centerline_algo,
        smooth=tools.centerline_smooth,
        qc_dir=paths.qc,
        qc_subject=layout.identifier,
    )

    derivative = layout.derivatives_centerline
    derivative.parent.mkdir(parents=True, exist_ok=True)
    copy2(centerline, derivative)

    reference = preprocess_reference(layout, policy, toolbox)

    return {
        "status": "PASS",
        "segmentation": layout.relative(seg),
        "centerline": layout.relative(centerline),
        "centerline_derivative": layout.relative(derivative),
        "reference": layout.relative(reference),
        "reference_raw": layout.relative(layout.reference_raw),
    }


def preprocess_reference(layout: SubjectLayout, policy: PipelinePolicy, toolbox: Toolbox) -> Path:
    """Reorient and resample the T2w image in place, keeping the raw acquisition."""
    reference = layout.reference_image
    raw = layout.reference_raw
    reference.replace(raw)

    raw_stem = strip_nifti_ext(raw.name)
    reoriented = raw.with_name(f"{raw_stem}_{policy.tools.orientation}.nii.gz")
    resampled = raw.with_name(f"{raw_stem}_{policy.tools.orientation}_r.nii.gz")

    toolbox.set_orientation(raw, reoriented, policy.tools.orientation)
    toolbox.resample(reoriented, resampled, policy.tools.resample_mm)
    resampled.replace(reference)
    return reference


def missing_segmentation_line(layout: SubjectLayout) -> str:
    """
    Error-log line for a subject without a manual segmentation.

    The line starts with the normalised identifier (``sub-XX`` or
    ``sub-XX/ses-YY``, surrounding whitespace and trailing slashes removed),
    not the raw argument, so repeated runs of one subject always log the
    same prefix.
    """
    return f"{layout.identifier}/{layout.seg_manual_path} does not exist"
