"""
Run configuration: environment-supplied paths and the pipeline policy.

The batch runner exports ``PATH_DATA``, ``PATH_DATA_PROCESSED``,
``PATH_RESULTS``, ``PATH_LOG`` and ``PATH_QC`` before invoking the pipeline
once per subject. Tool parameters default to the values downstream consumers
depend on; ``policy/pipeline.yaml`` may restate them or narrow the contrast
table.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

import yaml
from jsonschema import Draft7Validator

from cordcenterline.errors import ConfigError

ENV_VARS = {
    "data": "PATH_DATA",
    "processed": "PATH_DATA_PROCESSED",
    "results": "PATH_RESULTS",
    "log": "PATH_LOG",
    "qc": "PATH_QC",
}

METADATA_FILES = ("participants.tsv", "participants.json", "dataset_description.json")

QC_PROCESSES = ("sct_get_centerline", "sct_label_vertebrae")


@dataclass(frozen=True)
class ContrastRole:
    role: str
    suffix: str
    combine_echoes: bool = False


DEFAULT_CONTRASTS: Tuple[ContrastRole, ...] = (
    ContrastRole("stir", "STIR"),
    ContrastRole("psir", "PSIR"),
    ContrastRole("t2star", "T2star", combine_echoes=True),
    ContrastRole("mt_mts", "acq-MT_MTS"),
    ContrastRole("t1_mts", "acq-T1w_MTS"),
    ContrastRole("mton_mts", "acq-MTon_MTS"),
    ContrastRole("mtoff_mts", "acq-MToff_MTS"),
)


@dataclass(frozen=True)
class ToolParameters:
    orientation: str = "RPI"
    resample_mm: str = "0.8x0.8x0.8"
    centerline_method: str = "fitseg"
    centerline_algo: str = "bspline"
    centerline_smooth: int = 30
    interpolation: str = "nn"
    qc_processes: Tuple[str, ...] = QC_PROCESSES


@dataclass(frozen=True)
class PipelinePolicy:
    version: int = 1
    tools: ToolParameters = field(default_factory=ToolParameters)
    contrasts: Tuple[ContrastRole, ...] = DEFAULT_CONTRASTS
    metadata_files: Tuple[str, ...] = METADATA_FILES


@dataclass(frozen=True)
class RunPaths:
    data: Path
    processed: Path
    results: Path
    log: Path
    qc: Path

    @property
    def error_log(self) -> Path:
        return self.log / "_error_check_input_files.log"

    @property
    def runs_log(self) -> Path:
        return self.log / "cordcenterline_runs.jsonl"

    def as_dict(self) -> dict:
        return {key: str(getattr(self, key)) for key in ENV_VARS}


POLICY_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["version"],
    "additionalProperties": False,
    "properties": {
        "version": {"type": "integer", "minimum": 1},
        "tools": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "orientation": {"type": "string", "pattern": "^[RLAPSI]{3}$"},
                "resample_mm": {"type": "string", "pattern": r"^\d+(\.\d+)?x\d+(\.\d+)?x\d+(\.\d+)?$"},
                "centerline_method": {"type": "string", "minLength": 1},
                "centerline_algo": {"type": "string", "minLength": 1},
                "centerline_smooth": {"type": "integer", "minimum": 0},
                "interpolation": {"type": "string", "enum": ["nn", "linear", "spline", "label"]},
                "qc_processes": {"type": "array", "items": {"type": "string"}, "minItems": 1},
            },
        },
        "contrasts": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["role", "suffix"],
                "additionalProperties": False,
                "properties": {
                    "role": {"type": "string", "minLength": 1},
                    "suffix": {"type": "string", "pattern": "^[A-Za-z0-9_-]+$"},
                    "combine_echoes": {"type": "boolean"},
                },
            },
        },
        "metadata_files": {"type": "array", "items": {"type": "string", "minLength": 1}},
    },
}


def load_pipeline_policy(policy_path: Optional[Path | str] = None) -> PipelinePolicy:
    """
    Load the pipeline policy, or the built-in defaults when no path is given.

    Raises:
        ConfigError: when the file is missing, is not YAML, or fails the schema.
    """
    if policy_path is None:
        return PipelinePolicy()

    path = Path(policy_path)
    if not path.exists():
        raise ConfigError(f"Pipeline policy not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as err:
        raise ConfigError(f"Failed to parse pipeline policy YAML: {err}") from err

    if not isinstance(raw, dict):
        raise ConfigError("Pipeline policy must be a mapping at the top level.")

    validator = Draft7Validator(POLICY_SCHEMA)
    errors = sorted(validator.iter_errors(raw), key=lambda e: [str(p) for p in e.path])
    if errors:
        msgs = "; ".join(e.message for e in errors)
        raise ConfigError(f"Schema validation failed for {path}: {msgs}")

    tools_raw = raw.get("tools") or {}
    if "qc_processes" in tools_raw:
        tools_raw = {**tools_raw, "qc_processes": tuple(tools_raw["qc_processes"])}
    tools = ToolParameters(**tools_raw)

    contrasts = DEFAULT_CONTRASTS
    if "contrasts" in raw:
        contrasts = tuple(ContrastRole(**entry) for entry in raw["contrasts"])
        roles = [c.role for c in contrasts]
        duplicates = sorted({r for r in roles if roles.count(r) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate contrast role(s) in pipeline policy: {', '.join(duplicates)}")

    metadata_files = tuple(raw.get("metadata_files", METADATA_FILES))

    return PipelinePolicy(
        version=raw["version"],
        tools=tools,
        contrasts=contrasts,
        metadata_files=metadata_files,
    )


def resolve_run_paths(
    overrides: Optional[Mapping[str, Optional[Path]]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RunPaths:
    """
    Resolve the five run directories from explicit overrides, falling back to
    the batch runner's environment variables.

    Raises:
        ConfigError: when a path is unset or does not name an existing directory.
    """
    overrides = overrides or {}
    environ = os.environ if environ is None else environ

    resolved: dict[str, Path] = {}
    missing: list[str] = []
    for key, env_name in ENV_VARS.items():
        value = overrides.get(key)
        if value is None:
            env_value = environ.get(env_name)
            value = Path(env_value).expanduser() if env_value else None
        if value is None:
            missing.append(env_name)
            continue
        resolved[key] = Path(value)

    if missing:
        raise ConfigError(f"Missing required path(s): {', '.join(missing)}")

    not_dirs = [f"{ENV_VARS[key]}={path}" for key, path in resolved.items() if not path.is_dir()]
    if not_dirs:
        raise ConfigError(f"Path(s) must be existing directories: {', '.join(not_dirs)}")

    return RunPaths(**resolved)
