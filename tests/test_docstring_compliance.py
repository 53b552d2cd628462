from __future__ import annotations

import ast
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

SRC_ROOT = Path(__file__).resolve().parents[1] / "src" / "fresnel_comm"

_Def = Union[ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef]


@dataclass(frozen=True)
class MissingDocstring:
    path: Path
    lineno: int
    qualname: str


def _missing_in(py_path: Path) -> List[MissingDocstring]:
    tree = ast.parse(py_path.read_text(encoding="utf-8"), filename=str(py_path))
    missing: List[MissingDocstring] = []

    def _walk(node: ast.AST, prefix: str) -> None:
        for child in ast.iter_child_nodes(node):
            if isinstance(child, (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
                qualname = f"{prefix}{child.name}"
                if ast.get_docstring(child) is None:
                    missing.append(MissingDocstring(py_path, child.lineno, qualname))
                _walk(child, qualname + ".")
            else:
                _walk(child, prefix)

    _walk(tree, "")
    return missing


def test_every_module_has_a_docstring() -> None:
    undocumented = [
        str(p.relative_to(SRC_ROOT))
        for p in sorted(SRC_ROOT.rglob("*.py"))
        if ast.get_docstring(ast.parse(p.read_text(encoding="utf-8"))) is None
    ]
    assert undocumented == []


def test_docstrings_present_for_all_defs_under_src() -> None:
    """
    Docstring 护栏：`src/fresnel_comm` 下每个 `class/def/async def`（含嵌套定义）都必须有 docstring。
    """

    assert SRC_ROOT.is_dir()
    missing: List[MissingDocstring] = []
    for py_path in sorted(SRC_ROOT.rglob("*.py")):
        missing.extend(_missing_in(py_path))

    if not missing:
        return
    lines = ["missing docstrings:"]
    lines.extend(f"- {m.path.relative_to(SRC_ROOT)}:{m.lineno} {m.qualname}" for m in missing)
    raise AssertionError("\n".join(lines))
