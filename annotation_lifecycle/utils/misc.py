import importlib.util
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def load_module(script_path: Path, module_name: str = "module"):
    """Import a Python file under ``module_name`` and return the module."""
    spec = importlib.util.spec_from_file_location(module_name, str(script_path))
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load module from {script_path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


def format_bytes(size: int) -> str:
    """Human readable size, e.g. ``1.5 KiB``."""
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(value) < 1024 or unit == "GiB":
            break
        value /= 1024
    if unit == "B":
        return f"{int(value)} B"
    return f"{value:.1f} {unit}"
