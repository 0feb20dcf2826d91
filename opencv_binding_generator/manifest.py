import sys
import os
import platform
import shlex
from datetime import datetime, timezone
from importlib import metadata as importlib_metadata

import json
from pathlib import Path
from typing import Optional

from .models import GeneratorConfig, ModuleOutput
from .utils import write_text

import logging
logger = logging.getLogger(__name__)

DIST_NAME = "opencv-binding-generator"


def generator_version() -> str:
    """Installed distribution version, else the package's __version__."""
    try:
        return importlib_metadata.version(DIST_NAME)
    except importlib_metadata.PackageNotFoundError:
        from . import __version__
        return __version__


def manifest_path(out_dir: Path, module: str) -> Path:
    return Path(out_dir) / f"{module}.manifest.json"


def build_manifest(config: GeneratorConfig, output: ModuleOutput, version: Optional[str]) -> dict:
    """
    JSON-ready description of one module run: generator metadata, invocation,
    configuration, the ordered descriptors and the diagnostics.
    """
    argv = list(getattr(sys, "argv", []) or [])
    return {
        "generator": {
            "name": DIST_NAME,
            "version": generator_version(),
        },
        "invocation": {
            "argv": argv,
            "command_line": " ".join(shlex.quote(a) for a in argv) if argv else "",
        },
        "environment": {
            "python_version": sys.version,
            "platform": platform.platform(),
            "cwd": os.getcwd(),
            "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        },
        "opencv_version": version,
        "module": output.module,
        "config": config.to_dict(),
        "type_count": len(output.types),
        "types": [t.to_dict() for t in output.types],
        "diagnostics": [d.to_dict() for d in output.diagnostics],
    }


def emit_manifest(config: GeneratorConfig, output: ModuleOutput, version: Optional[str]) -> Path:
    """
    Write <out_dir>/<module>.manifest.json. Useful for debugging and for
    diffing what changed between two regenerations.
    """
    path = manifest_path(config.out_dir, output.module)
    content = json.dumps(build_manifest(config, output, version), indent=2)
    write_text(path, content + "\n")
    logger.debug("Manifest for module %s written to %s", output.module, path)
    return path
