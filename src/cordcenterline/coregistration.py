"""
Bring the auxiliary contrasts of a subject into the T2w space.

The contrast table is iterated in order; a contrast whose image is absent is
skipped without any record in the shared error log.
"""

from __future__ import annotations

import logging
from pathlib import Path

import nibabel as nib

from cordcenterline.config import ContrastRole, PipelinePolicy, RunPaths
from cordcenterline.layout import SubjectLayout
from cordcenterline.toolbox import Toolbox

logger = logging.getLogger(__name__)


def run_coregistration_stage(
    layout: SubjectLayout,
    paths: RunPaths,
    policy: PipelinePolicy,
    toolbox: Toolbox,
    reference_ready: bool,
) -> dict:
    if not reference_ready:
        # Without the resampled T2w and its centerline there is nothing to register onto.
        logger.info("Skipping co-registration for %s: reference image was not prepared.", layout.identifier)
        return {"status": "SKIP", "reason": "reference image not prepared", "contrasts": {}}

    results: dict[str, dict] = {}
    for role in policy.contrasts:
        image = layout.image(role.suffix)
        if not image.is_file():
            continue
        results[role.role] = register_contrast(layout, paths, policy, toolbox, role, image)

    return {"status": "PASS", "contrasts": results}


def register_contrast(
    layout: SubjectLayout,
    paths: RunPaths,
    policy: PipelinePolicy,
    toolbox: Toolbox,
    role: ContrastRole,
    image: Path,
) -> dict:
    combined = False
    if role.combine_echoes and image_ndim(image) > 3:
        image = combine_echoes(layout, role, toolbox)
        combined = True

    registered = toolbox.register_identity(
        image,
        layout.reference_image,
        layout.registered(image),
        interpolation=policy.tools.interpolation,
    )

    # Registration quality is judged against the T2w centerline.
    for process in policy.tools.qc_processes:
        toolbox.qc_overlay(registered, layout.working_centerline, process, paths.qc, layout.identifier)

    return {
        "image": layout.relative(image),
        "registered": layout.relative(registered),
        "echoes_combined": combined,
    }


def combine_echoes(layout: SubjectLayout, role: ContrastRole, toolbox: Toolbox) -> Path:
    """
    Root-mean-square across the echoes of a multi-echo volume. The combined
    3-D volume takes over the canonical file name; the acquisition is kept
    under ``_raw``.
    """
    canonical = layout.image(role.suffix)
    raw = layout.image(f"{role.suffix}_raw")
    rms = layout.image(f"{role.suffix}_raw_rms")

    canonical.replace(raw)
    toolbox.rms_across_time(raw, rms)
    rms.replace(canonical)
    logger.info("Combined echoes of %s into %s", raw.name, canonical.name)
    return canonical


def image_ndim(path: Path) -> int:
    return len(nib.load(str(path)).shape)
