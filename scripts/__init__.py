import subprocess
import shutil
import sys
from pathlib import Path

from duckbridge.errors import DuckbridgeError
from duckbridge.execution.connection import ConnectionSettings
from duckbridge.execution.protocol import ConnectionProtocol

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# ==================================================
# Test Runners
# ==================================================


def _pytest(*targets: str) -> int:
    return subprocess.run([sys.executable, "-m", "pytest", *targets], cwd=PROJECT_ROOT, check=False).returncode


def run_unit_tests():
    """Run unit tests in duckbridge/tests against the fake worker."""
    print("Running unit tests...")
    sys.exit(_pytest("duckbridge/tests"))


def run_integration_tests():
    """Run integration tests in tests/ against a real duckex worker."""
    print("Running integration tests...")
    if _find_worker() is None:
        print("No duckex worker found; integration tests will be skipped.")
    sys.exit(_pytest("tests"))


def run_all_tests():
    print("Running all tests...")
    sys.exit(_pytest())


# ==================================================
# Worker Check
# ==================================================


def _find_worker() -> str | None:
    try:
        return ConnectionSettings.from_env().resolve_executable()
    except DuckbridgeError:
        return None


def check_worker():
    """
    Starts the configured worker, runs one query and stops it again.
    Exits non-zero when the worker cannot be reached.
    """
    settings = ConnectionSettings.from_env()
    try:
        with ConnectionProtocol.connect(settings) as conn:
            query = conn.prepare("SELECT 42")
            try:
                rows = conn.execute(query).rows
            finally:
                conn.close(query)
            print(f"Worker {settings.resolve_executable()} (pid {conn.worker_pid}) answered {rows}")
    except DuckbridgeError as exc:
        print(f"Worker check failed: {exc}")
        sys.exit(1)


# ==================================================
# Cleanup
# ==================================================


def clean_project():
    """Remove build output and caches (venv, __pycache__, .pytest_cache, egg-info)."""
    targets = {PROJECT_ROOT / name for name in ("venv", ".pytest_cache", "build", "dist")}
    targets.update(PROJECT_ROOT.glob("*.egg-info"))
    targets.update(PROJECT_ROOT.rglob("__pycache__"))

    print("Cleaning up project...")
    for target in sorted(targets):
        if not target.is_dir():
            continue
        try:
            shutil.rmtree(target)
            print(f"Removed: {target.relative_to(PROJECT_ROOT)}")
        except OSError as e:
            print(f"Failed to remove {target}: {e}")

    print("Cleanup complete.")
