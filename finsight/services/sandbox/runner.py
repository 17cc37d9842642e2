"""
Child-process entry point for generated analysis code.

Run as ``python -I runner.py <memory_mb> <cpu_seconds>`` with a JSON payload
on stdin: ``{"code", "context", "allowedModules", "maxCaptureBytes"}``.
Writes exactly one JSON document to stdout:

    {"ok": true, "result": ..., "stdout": "..."}
    {"ok": false, "errorType": "...", "message": "...", "stdout": "..."}

Generated code sees restricted builtins and public views of the allowed
modules. Host access (files, sockets, processes, new imports) is refused by
an audit hook installed right before the code runs; audit hooks cannot be
removed, so the child stays locked down until it exits.

Standard library only; this file is never imported by the service.
"""

import ast
import builtins
import contextlib
import importlib
import io
import json
import sys
import traceback
import types

_DENIED_BUILTINS = frozenset({
    "open",
    "eval",
    "exec",
    "compile",
    "input",
    "breakpoint",
    "globals",
    "locals",
    "vars",
    "help",
    "exit",
    "quit",
    "memoryview",
    "copyright",
    "credits",
    "license",
    "__loader__",
    "__spec__",
    "__import__",
})

_DENIED_EVENT_PREFIXES = (
    "open",
    "import",
    "os.",
    "subprocess.",
    "socket.",
    "ctypes.",
    "shutil.",
    "urllib.",
    "http.",
    "ftplib.",
    "smtplib.",
    "webbrowser.",
    "resource.",
    "gc.",
    "mmap.",
    "sys.addaudithook",
    "sys._current_frames",
    "sys.setprofile",
    "sys.settrace",
    "marshal.",
    "pickle.",
    "code.__new__",
    "function.__new__",
)

_real_stdout = sys.stdout


class SandboxViolation(PermissionError):
    pass


def apply_resource_limits(memory_mb: int, cpu_seconds: int) -> None:
    import resource

    memory_bytes = memory_mb * 1024 * 1024
    resource.setrlimit(resource.RLIMIT_AS, (memory_bytes, memory_bytes))
    resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))
    resource.setrlimit(resource.RLIMIT_FSIZE, (0, 0))
    resource.setrlimit(resource.RLIMIT_NOFILE, (64, 64))
    if hasattr(resource, "RLIMIT_NPROC"):
        resource.setrlimit(resource.RLIMIT_NPROC, (0, 0))


def deny_hook(prefixes):
    """Audit hook refusing every event that starts with one of ``prefixes``.

    The prefixes live only in this closure. Nothing keeps a reference to the
    returned hook besides the interpreter, so analysis code cannot reach it.
    """

    def hook(event, args):
        if event.startswith(prefixes):
            raise SandboxViolation(f"Operation '{event}' is not permitted in the sandbox")

    return hook


def _is_dunder(name):
    return name.startswith("__") and name.endswith("__")


def find_violation(tree):
    """First forbidden construct in the module, or None."""
    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            return f"access to private attribute '{node.attr}'"
        if isinstance(node, ast.Name) and _is_dunder(node.id):
            return f"use of name '{node.id}'"
        if isinstance(node, (ast.Import, ast.ImportFrom)):
            names = [alias.name for alias in node.names]
            if any(name.startswith("_") or _is_dunder(name) for name in names):
                return "import of private names"
        if isinstance(node, (ast.Global, ast.Nonlocal)) and any(_is_dunder(n) for n in node.names):
            return "rebinding of special names"
    return None


def _guarded_attr(func):
    def guarded(obj, name, *args):
        if isinstance(name, str) and name.startswith("_"):
            raise SandboxViolation(f"Access to attribute '{name}' is not permitted")
        return func(obj, name, *args)

    guarded.__name__ = func.__name__
    return guarded


def public_view(name, views):
    """Stand-in for module ``name`` holding its public attributes.

    Modules it merely imported (``statistics.sys``, ``re.enum``) are left out;
    submodules registered under ``name`` are kept, as views themselves.
    """
    view = views.get(name)
    if view is not None:
        return view
    module = sys.modules[name]
    view = types.ModuleType(name, module.__doc__)
    views[name] = view
    for attr, value in list(vars(module).items()):
        if attr.startswith("_") or isinstance(value, types.ModuleType):
            continue
        setattr(view, attr, value)
    prefix = name + "."
    for submodule in [n for n in sys.modules if n.startswith(prefix)]:
        attr = submodule[len(prefix):]
        if "." not in attr and not attr.startswith("_"):
            setattr(view, attr, public_view(submodule, views))
    return view


def build_builtins(allowed_modules):
    real_import = builtins.__import__
    views = {}

    def restricted_import(name, globals=None, locals=None, fromlist=(), level=0):
        root = name.split(".")[0]
        if level != 0 or root not in allowed_modules:
            raise ImportError(f"Import of '{name}' is not allowed")
        real_import(name, None, None, fromlist, 0)
        return public_view(name if fromlist else root, views)

    for name in allowed_modules:
        public_view(name, views)

    safe = {k: v for k, v in vars(builtins).items() if k not in _DENIED_BUILTINS}
    safe["__import__"] = restricted_import
    safe["getattr"] = _guarded_attr(getattr)
    safe["setattr"] = _guarded_attr(setattr)
    safe["delattr"] = _guarded_attr(delattr)
    safe["hasattr"] = _guarded_attr(hasattr)
    return safe


def preload(module_names):
    loaded = set()
    for name in module_names:
        try:
            importlib.import_module(name)
        except ImportError:
            continue
        loaded.add(name)
    # Lazily imported by datetime.strptime and time.strptime
    importlib.import_module("_strptime")
    return loaded


def emit(document):
    _real_stdout.write(json.dumps(document))
    _real_stdout.write("\n")
    _real_stdout.flush()


def failure(error_type, message, captured=""):
    return {"ok": False, "errorType": error_type, "message": message, "stdout": captured}


def run(payload):
    code = payload["code"]
    context = payload.get("context") or {}
    capture_limit = int(payload.get("maxCaptureBytes", 65536))
    allowed = preload(payload.get("allowedModules") or [])

    try:
        tree = ast.parse(code, filename="<analysis>", mode="exec")
    except SyntaxError as e:
        return failure("SyntaxError", f"{e.msg} (line {e.lineno})")
    violation = find_violation(tree)
    if violation:
        return failure("PermissionError", f"Forbidden construct: {violation}")
    compiled = compile(tree, "<analysis>", "exec")

    namespace = {"__builtins__": build_builtins(allowed), "__name__": "analysis"}
    captured = io.StringIO()
    sys.addaudithook(deny_hook(_DENIED_EVENT_PREFIXES))
    try:
        with contextlib.redirect_stdout(captured):
            exec(compiled, namespace)
            analyze = namespace.get("analyze")
            if callable(analyze):
                result = analyze(context)
            elif "result" in namespace:
                result = namespace["result"]
            else:
                return failure("NoResult", "Code defines neither analyze(context) nor result")
    except MemoryError:
        return failure("MemoryError", "Memory limit exceeded")
    except BaseException as e:
        lines = [
            lineno
            for frame, lineno in traceback.walk_tb(e.__traceback__)
            if frame.f_code.co_filename == "<analysis>"
        ]
        where = f" (line {lines[-1]})" if lines else ""
        return failure(type(e).__name__, f"{e}{where}", captured.getvalue()[:capture_limit])

    output = captured.getvalue()[:capture_limit]
    try:
        json.dumps(result)
    except (TypeError, ValueError) as e:
        return failure("ResultNotSerializable", f"Result is not JSON serializable: {e}", output)
    return {"ok": True, "result": result, "stdout": output}


def main():
    if len(sys.argv) >= 3:
        apply_resource_limits(int(sys.argv[1]), int(sys.argv[2]))
    try:
        payload = json.loads(sys.stdin.buffer.read())
    except ValueError as e:
        emit(failure("InvalidPayload", str(e)))
        return 2
    try:
        emit(run(payload))
    except MemoryError:
        emit(failure("MemoryError", "Memory limit exceeded"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
