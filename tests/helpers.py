import contextlib
import importlib
import sys
from pathlib import Path

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"
MODELS_DIR = FIXTURES_DIR / "models"
SOURCE_PACKAGE = "resos.model"


def drop_modules(prefix: str) -> None:
    for name in list(sys.modules):
        if name == prefix or name.startswith(prefix + "."):
            del sys.modules[name]


@contextlib.contextmanager
def on_sys_path(*paths: Path):
    added = [str(p) for p in paths if str(p) not in sys.path]
    for p in added:
        sys.path.insert(0, p)
    importlib.invalidate_caches()
    try:
        yield
    finally:
        for p in added:
            sys.path.remove(p)


def write_module(root: Path, dotted: str, source: str) -> Path:
    """Write ``source`` as module ``dotted`` under ``root``, creating packages."""
    parts = dotted.split(".")
    path = root
    for part in parts[:-1]:
        path = path / part
        path.mkdir(parents=True, exist_ok=True)
        init = path / "__init__.py"
        if not init.exists():
            init.write_text("", encoding="utf-8")
    target = path / f"{parts[-1]}.py"
    target.write_text(source, encoding="utf-8")
    return target
