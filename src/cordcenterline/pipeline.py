"""
Per-subject pipeline: staging, centerline, co-registration, run summary.

``run_subject`` executes the stages in order for one subject. A failing
toolbox command, a missing source file or an unreadable image stops the run
immediately (``FAIL``); a missing manual segmentation is logged to the shared
error log and downgrades the run to ``WARN``. ``check_subject`` re-reads the outputs of
a finished run without invoking any tool.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import nibabel as nib
import numpy as np
from nibabel.filebasedimages import ImageFileError

from cordcenterline import errorlog
from cordcenterline.centerline import missing_segmentation_line, run_centerline_stage
from cordcenterline.config import PipelinePolicy, RunPaths
from cordcenterline.coregistration import run_coregistration_stage
from cordcenterline.errors import LayoutError, StagingError, ToolError
from cordcenterline.layout import SubjectLayout
from cordcenterline.staging import stage_subject
from cordcenterline.summary import format_duration, run_summary
from cordcenterline.toolbox import SCTToolbox, Toolbox

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    status: str
    failure_message: Optional[str]
    runs_path: Optional[Path] = None
    record: dict = field(default_factory=dict)
    tool_output: Optional[str] = None


def run_subject(
    subject: str,
    paths: RunPaths,
    policy: Optional[PipelinePolicy] = None,
    toolbox: Optional[Toolbox] = None,
) -> StepResult:
    policy = policy or PipelinePolicy()
    toolbox = toolbox or SCTToolbox()
    started = time.time()

    try:
        layout = SubjectLayout.from_identifier(subject, paths.data, paths.processed)
    except LayoutError as err:
        return StepResult(status="FAIL", failure_message=str(err))

    logger.info("Processing %s", layout.identifier)
    logger.info("Run paths: %s", paths.as_dict())

    record: dict = {
        "subject": layout.identifier,
        "flat_subject": layout.flat,
        "status": "FAIL",
        "failure_message": None,
        "paths": paths.as_dict(),
        "stages": {},
    }
    stages = record["stages"]
    tool_output = None

    try:
        logger.info("Dependency report:\n%s", toolbox.check_dependencies())
        stages["staging"] = stage_subject(layout, policy)
        stages["centerline"] = run_centerline_stage(layout, paths, policy, toolbox)
        reference_ready = stages["centerline"]["status"] == "PASS"
        stages["coregistration"] = run_coregistration_stage(
            layout, paths, policy, toolbox, reference_ready=reference_ready
        )
    except ToolError as err:
        record["failure_message"] = str(err)
        record["command"] = err.cmd
        tool_output = err.output
    except StagingError as err:
        record["failure_message"] = str(err)
    except (OSError, ImageFileError) as err:
        # Unreadable images and failed file operations in the processing tree.
        record["failure_message"] = f"{type(err).__name__}: {err}"
    else:
        record["status"] = "PASS" if reference_ready else "WARN"
        record["summary"] = run_summary(toolbox, started)

    if record["status"] == "FAIL":
        elapsed = time.time() - started
        record["summary"] = {"duration_sec": round(elapsed, 3), "duration": format_duration(elapsed)}
        logger.error("%s failed: %s", layout.identifier, record["failure_message"])

    errorlog.append_json(paths.runs_log, record)

    return StepResult(
        status=record["status"],
        failure_message=record["failure_message"],
        runs_path=paths.runs_log,
        record=record,
        tool_output=tool_output,
    )


def check_subject(
    subject: str,
    paths: RunPaths,
    policy: Optional[PipelinePolicy] = None,
) -> StepResult:
    policy = policy or PipelinePolicy()
    try:
        layout = SubjectLayout.from_identifier(subject, paths.data, paths.processed)
    except LayoutError as err:
        return StepResult(status="FAIL", failure_message=str(err))

    if not layout.seg_manual_path.is_file():
        expected_line = missing_segmentation_line(layout)
        if expected_line not in errorlog.read_lines(paths.error_log):
            return StepResult(
                status="FAIL",
                failure_message=f"Missing segmentation not recorded in {paths.error_log}",
            )
        unexpected = [layout.derivatives_centerline, layout.reference_raw]
        unexpected.extend(layout.registered(layout.image(role.suffix)) for role in policy.contrasts)
        present = [p for p in unexpected if p.exists()]
        if present:
            return StepResult(
                status="FAIL",
                failure_message=(
                    "Unexpected output(s) without manual segmentation: "
                    f"{', '.join(str(p) for p in present)}"
                ),
            )
        return StepResult(status="WARN", failure_message=expected_line)

    required = (layout.derivatives_centerline, layout.reference_image, layout.reference_raw)
    missing = [p for p in required if not p.exists() or p.stat().st_size == 0]
    if missing:
        return StepResult(
            status="FAIL",
            failure_message=f"Missing required output(s): {', '.join(str(p) for p in missing)}",
        )

    problems: list[str] = []
    if not same_grid(layout.reference_image, layout.derivatives_centerline):
        problems.append("reference image and centerline are on different voxel grids")
    expected_zooms = [float(v) for v in policy.tools.resample_mm.split("x")]
    if not np.allclose(voxel_size(layout.reference_image), expected_zooms, atol=1e-3):
        problems.append(f"reference image is not resampled to {policy.tools.resample_mm} mm")

    for role in policy.contrasts:
        image = layout.image(role.suffix)
        if not image.is_file():
            continue
        registered = layout.registered(image)
        if not registered.exists():
            problems.append(f"missing registered {role.role}: {registered}")
        elif not same_grid(registered, layout.reference_image):
            problems.append(f"registered {role.role} does not match the reference grid")

    if problems:
        return StepResult(status="FAIL", failure_message="; ".join(problems))
    return StepResult(status="PASS", failure_message=None)


def voxel_size(path: Path) -> tuple[float, ...]:
    return tuple(float(z) for z in nib.load(str(path)).header.get_zooms()[:3])


def same_grid(a: Path, b: Path, atol: float = 1e-4) -> bool:
    img_a = nib.load(str(a))
    img_b = nib.load(str(b))
    if tuple(img_a.shape[:3]) != tuple(img_b.shape[:3]):
        return False
    return bool(np.allclose(img_a.affine, img_b.affine, atol=atol))
