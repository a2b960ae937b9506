import ast
from pathlib import Path
import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]


def _imported_modules(py_file: Path):
    tree = ast.parse(py_file.read_text(encoding="utf-8"), filename=str(py_file))
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                yield node.lineno, alias.name
        elif isinstance(node, ast.ImportFrom) and node.module and node.level == 0:
            yield node.lineno, node.module


@pytest.mark.parametrize("layer,forbidden", [
    ("pipeline", ("abr.ui",)),
    ("infrastructure", ("abr.ui", "abr.pipeline")),
    ("domain", ("abr.ui", "abr.pipeline", "abr.infrastructure", "abr.config")),
])
def test_layer_imports(layer, forbidden):
    violations = []
    for py_file in (REPO_ROOT / "abr" / layer).rglob("*.py"):
        for lineno, module in _imported_modules(py_file):
            if any(module == prefix or module.startswith(prefix + ".") for prefix in forbidden):
                violations.append(f"{py_file.relative_to(REPO_ROOT)}:{lineno} imports {module}")

    assert not violations, f"{layer} layer crosses a boundary:\n" + "\n".join(violations)
