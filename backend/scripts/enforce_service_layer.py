"""
Engineering audit: enforce claim ownership.

Claim rows (final payout markers, idempotency keys, id counters, project id
claims) decide at-most-once behaviour, so only their owning modules may
write them. Scans apps/ and fails if a write is found anywhere else.

Run: python scripts/enforce_service_layer.py
"""

import ast
import sys
from pathlib import Path

OWNERS = {
    "FinalPayoutMarker": ("apps/payments/executor.py", "apps/payments/rollback.py"),
    "IdempotencyKey": (
        "apps/payments/executor.py",
        "apps/payments/rollback.py",
        "apps/payments/services.py",
    ),
    "IdCounter": ("apps/projects/allocator.py",),
    "ProjectIdClaim": ("apps/projects/allocator.py",),
}

WRITE_METHODS = {
    "create",
    "get_or_create",
    "update_or_create",
    "bulk_create",
    "bulk_update",
    "update",
    "delete",
}

STORE_WRITERS = {"create_only", "advance_if_lower"}


def _root_name(node):
    while True:
        if isinstance(node, ast.Attribute):
            node = node.value
        elif isinstance(node, ast.Call):
            node = node.func
        elif isinstance(node, ast.Name):
            return node.id
        else:
            return None


def _written_model(call):
    func = call.func
    name = func.attr if isinstance(func, ast.Attribute) else getattr(func, "id", None)
    if name in STORE_WRITERS and call.args:
        return _root_name(call.args[0])
    if name in WRITE_METHODS and isinstance(func, ast.Attribute):
        return _root_name(func.value)
    return None


def scan_source(source, relpath):
    """Return (line, model) pairs for claim writes outside the model's owners."""
    issues = []
    for node in ast.walk(ast.parse(source)):
        if not isinstance(node, ast.Call):
            continue
        model = _written_model(node)
        if model in OWNERS and relpath not in OWNERS[model]:
            issues.append((node.lineno, model))
    return issues


def scan_tree(backend):
    issues = []
    for pyfile in sorted((backend / "apps").rglob("*.py")):
        relpath = pyfile.relative_to(backend).as_posix()
        if "/tests/" in relpath or "/migrations/" in relpath:
            continue
        for lineno, model in scan_source(pyfile.read_text(), relpath):
            issues.append(f"{relpath}:{lineno}: writes {model}")
    return issues


def main():
    backend = Path(__file__).resolve().parent.parent
    issues = scan_tree(backend)

    if issues:
        print("ERROR: Claim rows written outside their owning modules:")
        for issue in issues:
            print(f"  {issue}")
        sys.exit(1)

    print("OK: Claim rows are only written by their owning modules")


if __name__ == "__main__":
    main()
