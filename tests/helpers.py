import shlex
import sys
import time
from pathlib import Path

PYTHON = sys.executable

LONG_RUNNING = "import time\nprint('hi', flush=True)\nwhile True:\n    time.sleep(0.1)\n"
CRASHING = "import sys\nprint('boom', flush=True)\nsys.exit(1)\n"
EXITS_CLEANLY = "print('done', flush=True)\n"
CRASH_ONCE = (
    "import os, sys, time\n"
    "if not os.path.exists('crashed'):\n"
    "    open('crashed', 'w').close()\n"
    "    sys.exit(1)\n"
    "while True:\n"
    "    time.sleep(0.1)\n"
)


def python_command(code: str) -> str:
    return f"{shlex.quote(PYTHON)} -c {shlex.quote(code)}"


def wait_until(predicate, timeout: float = 10.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


def write_script(directory: Path, source: str, name: str = "script.py") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    script = directory / name
    script.write_text(source)
    return script
