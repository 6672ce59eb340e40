"""Pre-commit helper enforcing request-bounded transaction conventions.

Targets request-bounded code (podcore/routes, podcore/services). Each
service function opens its own `async with db.begin()` block, so explicit
commit()/rollback() and savepoints are rejected. The cron runner and
alembic migrations are not checked.
"""

from __future__ import annotations

import ast
import sys
from pathlib import Path


_FORBIDDEN_ATTRS = {"commit", "rollback", "begin_nested"}


def _find_violations(paths: list[Path]) -> list[str]:
    violations: list[str] = []
    for path in paths:
        if path.suffix != ".py":
            continue
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
        for node in ast.walk(tree):
            if not isinstance(node, ast.Call):
                continue
            func = node.func
            if isinstance(func, ast.Attribute) and func.attr in _FORBIDDEN_ATTRS:
                violations.append(f"{path}:{node.lineno} {func.attr}()")
    return violations


def main(argv: list[str]) -> int:
    paths = [
        Path(arg)
        for arg in argv[1:]
        if Path(arg).parts[:2] in {("podcore", "routes"), ("podcore", "services")}
    ]
    if not paths:
        return 0

    violations = _find_violations(paths)
    if not violations:
        return 0

    sys.stderr.write(
        "\n".join(
            [
                "Explicit commit()/rollback()/begin_nested() calls are forbidden in"
                " podcore routes and services. Use `async with db.begin(): ...` instead.",
                "",
                "Violations:",
                *sorted(violations),
                "",
            ]
        )
    )
    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
