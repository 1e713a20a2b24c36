"""
External toolbox capabilities used by the pipeline.

The pipeline only talks to :class:`Toolbox`; :class:`SCTToolbox` maps each
capability onto a Spinal Cord Toolbox program. Every call blocks until the
program exits. A non-zero exit raises :class:`ToolError` carrying the tool's
own diagnostic output.
"""

from __future__ import annotations

import abc
import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from cordcenterline.errors import ToolError

logger = logging.getLogger(__name__)


class Toolbox(abc.ABC):
    """Capabilities consumed as black boxes by the pipeline stages."""

    @abc.abstractmethod
    def check_dependencies(self) -> str:
        """Return the toolbox's short dependency/environment report."""

    @abc.abstractmethod
    def version(self) -> Optional[str]:
        """Return the toolbox version string, or None when unavailable."""

    @abc.abstractmethod
    def fit_centerline(
        self,
        seg: Path,
        output: Path,
        method: str,
        algo: str,
        smooth: int,
        qc_dir: Path,
        qc_subject: str,
    ) -> Path:
        """Fit a regularized centerline to an existing cord segmentation."""

    @abc.abstractmethod
    def set_orientation(self, source: Path, dest: Path, orientation: str) -> Path:
        """Reorient ``source`` to the given axis code."""

    @abc.abstractmethod
    def resample(self, source: Path, dest: Path, mm: str) -> Path:
        """Resample ``source`` to the voxel size ``mm`` (``XxYxZ``)."""

    @abc.abstractmethod
    def rms_across_time(self, source: Path, dest: Path) -> Path:
        """Collapse the 4th dimension with a root-mean-square."""

    @abc.abstractmethod
    def register_identity(self, source: Path, dest_ref: Path, output: Path, interpolation: str) -> Path:
        """Bring ``source`` into the space of ``dest_ref`` with an identity transform."""

    @abc.abstractmethod
    def qc_overlay(self, image: Path, seg: Path, process: str, qc_dir: Path, qc_subject: str) -> None:
        """Add an overlay of ``seg`` on ``image`` to the QC report."""


class SCTToolbox(Toolbox):
    def check_dependencies(self) -> str:
        return run_command(["sct_check_dependencies", "-short"])

    def version(self) -> Optional[str]:
        try:
            output = run_command(["sct_version"])
        except ToolError as err:
            logger.warning("Could not read SCT version: %s", err)
            return None
        return output.strip() or None

    def fit_centerline(
        self,
        seg: Path,
        output: Path,
        method: str,
        algo: str,
        smooth: int,
        qc_dir: Path,
        qc_subject: str,
    ) -> Path:
        cmd = [
            "sct_get_centerline",
            "-i",
            str(seg),
            "-method",
            method,
            "-centerline-algo",
            algo,
            "-centerline-smooth",
            str(smooth),
            "-o",
            str(output),
            "-qc",
            str(qc_dir),
            "-qc-subject",
            qc_subject,
        ]
        run_command(cmd, cwd=output.parent)
        return _expect_output(cmd, output)

    def set_orientation(self, source: Path, dest: Path, orientation: str) -> Path:
        cmd = ["sct_image", "-i", str(source), "-setorient", orientation, "-o", str(dest)]
        run_command(cmd, cwd=dest.parent)
        return _expect_output(cmd, dest)

    def resample(self, source: Path, dest: Path, mm: str) -> Path:
        cmd = ["sct_resample", "-i", str(source), "-mm", mm, "-o", str(dest)]
        run_command(cmd, cwd=dest.parent)
        return _expect_output(cmd, dest)

    def rms_across_time(self, source: Path, dest: Path) -> Path:
        cmd = ["sct_maths", "-i", str(source), "-rms", "t", "-o", str(dest)]
        run_command(cmd, cwd=dest.parent)
        return _expect_output(cmd, dest)

    def register_identity(self, source: Path, dest_ref: Path, output: Path, interpolation: str) -> Path:
        cmd = [
            "sct_register_multimodal",
            "-i",
            str(source),
            "-d",
            str(dest_ref),
            "-o",
            str(output),
            "-identity",
            "1",
            "-x",
            interpolation,
        ]
        # Warping fields land in the working directory.
        run_command(cmd, cwd=output.parent)
        return _expect_output(cmd, output)

    def qc_overlay(self, image: Path, seg: Path, process: str, qc_dir: Path, qc_subject: str) -> None:
        cmd = [
            "sct_qc",
            "-i",
            str(image),
            "-s",
            str(seg),
            "-p",
            process,
            "-qc",
            str(qc_dir),
            "-qc-subject",
            qc_subject,
        ]
        run_command(cmd, cwd=image.parent)


def run_command(cmd: Sequence[str], cwd: Optional[Path] = None) -> str:
    """
    Run ``cmd`` to completion and return its combined stdout/stderr.

    Raises:
        ToolError: when the program is not on PATH or exits non-zero.
    """
    logger.info(subprocess.list2cmdline(list(cmd)))
    try:
        result = subprocess.run(
            list(cmd),
            cwd=str(cwd) if cwd is not None else None,
            text=True,
            capture_output=True,
            check=True,
        )
    except FileNotFoundError as err:
        raise ToolError(cmd, str(err)) from err
    except subprocess.CalledProcessError as err:
        output = "\n".join(part for part in [err.stdout, err.stderr] if part)
        raise ToolError(cmd, output.strip(), returncode=err.returncode) from err
    output = "\n".join(part for part in [result.stdout, result.stderr] if part).strip()
    if output:
        logger.debug(output)
    return output


def _expect_output(cmd: Sequence[str], path: Path) -> Path:
    if not path.exists():
        raise ToolError(cmd, "", returncode=0, message=f"{cmd[0]} did not produce {path}")
    return path
