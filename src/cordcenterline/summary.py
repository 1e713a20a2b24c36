"""Run summary written to the log stream for post-hoc audit."""

from __future__ import annotations

import logging
import platform
import time
from typing import Optional

from cordcenterline.toolbox import Toolbox

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 3600}hrs {(total // 60) % 60}min {total % 60}sec"


def host_description() -> str:
    """Kernel name, node name and kernel release, as ``uname -nsr`` prints them."""
    uname = platform.uname()
    return " ".join(part for part in (uname.system, uname.node, uname.release) if part)


def run_summary(toolbox: Toolbox, started: float, finished: Optional[float] = None) -> dict:
    finished = time.time() if finished is None else finished
    duration = max(0.0, finished - started)
    sct_version = toolbox.version()
    summary = {
        "sct_version": sct_version,
        "host": host_description(),
        "duration_sec": round(duration, 3),
        "duration": format_duration(duration),
    }
    logger.info(
        "\n~~~\nSCT version: %s\nRan on:      %s\nDuration:    %s\n~~~",
        sct_version or "unknown",
        summary["host"],
        summary["duration"],
    )
    return summary
