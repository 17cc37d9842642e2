"""Tests for the code execution sandbox. These spawn real child interpreters."""

import sys

import pytest

from finsight.errors import ExecutionError, ExecutionResourceExceeded, ExecutionTimeout
from finsight.models.prompt import ExecutionOptions
from finsight.services.sandbox.executor import RUNNER_PATH, CodeExecutionSandbox, SandboxLimits

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="sandbox relies on POSIX rlimits")

CONTEXT = {
    "datasets": [{"id": "ds1", "name": "Revenue", "data": [{"month": "Jan", "amount": 100}]}],
    "options": {"visualizationType": "bar", "language": "en", "timeout": 5000, "memoryLimit": 256},
}


@pytest.fixture
def sandbox(settings):
    return CodeExecutionSandbox(settings)


@pytest.fixture
def limits():
    return SandboxLimits(timeout_seconds=10, memory_mb=512, cpu_seconds=10)


# ==========================================
#  Limits
# ==========================================


def test_resolve_limits_caps_requested_values(settings):
    capped = settings.model_copy(update={"sandbox_max_timeout": 5.0, "sandbox_max_memory_limit_mb": 256})
    sandbox = CodeExecutionSandbox(capped)
    limits = sandbox.resolve_limits(ExecutionOptions(timeout=60000, memory_limit=1024))
    assert limits.timeout_seconds == 5.0
    assert limits.memory_mb == 256
    assert limits.cpu_seconds <= 6


def test_resolve_limits_defaults(sandbox, settings):
    limits = sandbox.resolve_limits()
    assert limits.timeout_seconds == settings.sandbox_timeout
    assert limits.memory_mb == settings.sandbox_memory_limit_mb


# ==========================================
#  Successful runs
# ==========================================


async def test_analyze_function_result(sandbox, limits):
    code = """
import statistics

def analyze(context):
    rows = context["datasets"][0]["data"]
    print("rows", len(rows))
    return {
        "visualizations": [{"type": "bar", "title": "Revenue", "data": rows}],
        "insights": [{"title": "Mean", "content": str(statistics.mean(r["amount"] for r in rows)), "importance": 9}],
    }
"""
    result = await sandbox.run(code, CONTEXT, limits)
    assert result.visualizations[0].type == "bar"
    assert result.visualizations[0].data == [{"month": "Jan", "amount": 100}]
    assert result.insights[0].importance == 5


async def test_module_level_result_fallback(sandbox, limits):
    code = 'result = {"visualizations": [], "insights": [{"title": "t", "content": "c"}]}'
    result = await sandbox.run(code, CONTEXT, limits)
    assert result.visualizations == []
    assert result.insights[0].importance == 3


async def test_invalid_items_are_dropped(sandbox, limits):
    code = """
def analyze(context):
    return {"visualizations": [{"title": "no type"}, {"type": "line"}], "insights": ["bad"]}
"""
    result = await sandbox.run(code, CONTEXT, limits)
    assert [v.type for v in result.visualizations] == ["line"]
    assert result.insights == []


# ==========================================
#  Failures
# ==========================================


async def test_environment_is_not_readable(sandbox, limits):
    code = "import os\nresult = {'key': os.environ.get('ANTHROPIC_API_KEY')}"
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run(code, CONTEXT, limits)
    assert "ImportError" in exc.value.message


async def test_network_access_is_denied(sandbox, limits):
    code = """
def analyze(context):
    import socket
    socket.create_connection(("example.com", 80))
    return {}
"""
    with pytest.raises(ExecutionError):
        await sandbox.run(code, CONTEXT, limits)


async def test_file_access_is_denied(sandbox, limits):
    code = "result = {'data': open('/etc/passwd').read()}"
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run(code, CONTEXT, limits)
    assert "NameError" in exc.value.message


async def test_dunder_escape_is_rejected(sandbox, limits):
    code = "result = ().__class__.__bases__[0].__subclasses__()"
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run(code, CONTEXT, limits)
    assert "Forbidden construct" in exc.value.message


async def test_syntax_error(sandbox, limits):
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run("def analyze(context) return {}", CONTEXT, limits)
    assert "SyntaxError" in exc.value.message


async def test_runtime_error_reports_line(sandbox, limits):
    code = "def analyze(context):\n    x = 1\n    return 1 / 0\n"
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run(code, CONTEXT, limits)
    assert "ZeroDivisionError" in exc.value.message
    assert "line 3" in exc.value.message


async def test_non_dict_result(sandbox, limits):
    with pytest.raises(ExecutionError):
        await sandbox.run("def analyze(context):\n    return [1, 2]\n", CONTEXT, limits)


async def test_missing_entry_point(sandbox, limits):
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run("x = 1", CONTEXT, limits)
    assert "NoResult" in exc.value.message


async def test_timeout_kills_child(sandbox):
    limits = SandboxLimits(timeout_seconds=1, memory_mb=256, cpu_seconds=30)
    with pytest.raises(ExecutionTimeout) as exc:
        await sandbox.run("while True:\n    pass\n", CONTEXT, limits)
    assert exc.value.code == "EXECUTION_TIMEOUT"


async def test_memory_limit(sandbox):
    limits = SandboxLimits(timeout_seconds=20, memory_mb=128, cpu_seconds=20)
    code = "def analyze(context):\n    blob = 'x' * (512 * 1024 * 1024)\n    return {}\n"
    with pytest.raises(ExecutionResourceExceeded) as exc:
        await sandbox.run(code, CONTEXT, limits)
    assert exc.value.code == "EXECUTION_RESOURCE_EXCEEDED"


async def test_oversized_output(settings, limits):
    small = CodeExecutionSandbox(settings.model_copy(update={"sandbox_max_output_bytes": 1024}))
    code = "def analyze(context):\n    return {'visualizations': [{'type': 'bar', 'data': 'x' * 10000}]}\n"
    with pytest.raises(ExecutionResourceExceeded):
        await small.run(code, CONTEXT, limits)


# ==========================================
#  Escapes through module internals
# ==========================================

MODULE_GLOBALS = 'import operator\nimport statistics\nhost = operator.attrgetter("__globals__")(statistics.mean)\n'


async def test_allowed_module_does_not_expose_sys(sandbox, limits):
    code = (
        "import statistics\n"
        "real = statistics.sys.modules['builtins']\n"
        "result = {'leak': real.open('/etc/hostname').read()}\n"
    )
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run(code, CONTEXT, limits)
    assert "AttributeError" in exc.value.message


async def test_real_builtins_cannot_open_files(sandbox, limits):
    code = (
        MODULE_GLOBALS
        + "real = host['sys'].modules['builtins']\n"
        + "result = {'leak': real.open('/etc/hostname').read()}\n"
    )
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run(code, CONTEXT, limits)
    assert "not permitted" in exc.value.message


async def test_real_builtins_cannot_import_socket(sandbox, limits):
    code = (
        MODULE_GLOBALS
        + "real = host['sys'].modules['builtins']\n"
        + "sock = real.getattr(real, '__import__')('socket')\n"
        + "result = {'ok': str(sock.socket())}\n"
    )
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run(code, CONTEXT, limits)
    assert "not permitted" in exc.value.message


async def test_loaded_os_module_is_refused(sandbox, limits):
    code = MODULE_GLOBALS + "result = {'files': host['sys'].modules['os'].listdir('/')}\n"
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run(code, CONTEXT, limits)
    assert "not permitted" in exc.value.message


async def test_runner_globals_cannot_lift_restrictions(sandbox, limits):
    code = (
        MODULE_GLOBALS
        + "real = host['sys'].modules['builtins']\n"
        + "runner = real.vars(host['sys'].modules['__main__'])\n"
        + "runner['_DENIED_EVENT_PREFIXES'] = ()\n"
        + "result = {'leak': real.open('/etc/hostname').read()}\n"
    )
    with pytest.raises(ExecutionError) as exc:
        await sandbox.run(code, CONTEXT, limits)
    assert "not permitted" in exc.value.message


async def test_stdlib_helpers_still_work(sandbox, limits):
    code = """
import collections
from collections import abc
from datetime import datetime

Row = collections.namedtuple("Row", "month amount")

def analyze(context):
    rows = [Row(**r) for r in context["datasets"][0]["data"]]
    parsed = datetime.strptime("2024-01-31", "%Y-%m-%d")
    return {
        "visualizations": [{"type": "table", "title": str(parsed.year), "data": [{"month": r.month, "amount": r.amount} for r in rows]}],
        "insights": [{"title": "mapping", "content": str(isinstance({}, abc.Mapping))}],
    }
"""
    result = await sandbox.run(code, CONTEXT, limits)
    assert result.visualizations[0].title == "2024"
    assert result.visualizations[0].data == [{"month": "Jan", "amount": 100}]
    assert result.insights[0].content == "True"


# ==========================================
#  Child command and credentials
# ==========================================


def test_command_runs_isolated_interpreter(sandbox, limits):
    command = sandbox.build_command(limits)
    assert command[1:] == ["-I", str(RUNNER_PATH), "512", "10"]
    assert sandbox._credentials() == {}


def test_unprivileged_user_without_network_namespace(settings, limits):
    sandbox = CodeExecutionSandbox(settings.model_copy(update={"sandbox_uid": 65534}))
    assert sandbox.build_command(limits)[0] == sandbox.python_executable
    assert sandbox._credentials() == {"user": 65534, "group": 65534, "extra_groups": []}


def test_network_namespace_drops_privileges_through_unshare(settings, limits):
    isolated = settings.model_copy(
        update={"sandbox_isolate_network": True, "sandbox_uid": 1000, "sandbox_gid": 1001}
    )
    sandbox = CodeExecutionSandbox(isolated)
    command = sandbox.build_command(limits)
    assert command[:7] == ["unshare", "--net", "--setuid", "1000", "--setgid", "1001", "--"]
    assert command[7] == sandbox.python_executable
    assert sandbox._credentials() == {}
