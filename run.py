#!/usr/bin/env python3
"""
Quest Life launcher.

Sets up .venv with the project installed, then serves the API, runs the
reminder scheduler, or both.

    python run.py                  # API on http://127.0.0.1:8000
    python run.py --scheduler      # reminder loop only
    python run.py --both           # API plus reminder loop
    python run.py --skip-install   # reuse .venv as it is
"""

from __future__ import annotations

import argparse
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
VENV = ROOT / ".venv"
SCHEDULER_EVERY_MINUTES = 5


def venv_python() -> Path:
    if sys.platform.startswith("win"):
        return VENV / "Scripts" / "python.exe"
    return VENV / "bin" / "python"


def prepare(skip_install: bool) -> Path:
    if not (ROOT / "pyproject.toml").exists():
        raise SystemExit(f"pyproject.toml not found in {ROOT}; run this from the Quest Life checkout")
    python = venv_python()
    if not python.exists():
        print(f"Creating {VENV}")
        subprocess.run([sys.executable, "-m", "venv", str(VENV)], check=True)
    if not skip_install:
        print("Installing Quest Life into .venv")
        subprocess.run([str(python), "-m", "pip", "install", "-q", "-e", str(ROOT)], check=True)
    return python


def scheduler_command(python: Path) -> list[str]:
    return [str(python), "-m", "questlife.jobs.schedule_runner", "--every", str(SCHEDULER_EVERY_MINUTES)]


def server_command(python: Path, host: str, port: int, reload: bool) -> list[str]:
    cmd = [str(python), "-m", "uvicorn", "questlife.main:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")
    return cmd


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the Quest Life API and reminder scheduler.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--scheduler", action="store_true", help="run only the reminder scheduler loop")
    mode.add_argument("--both", action="store_true", help="run the API and the reminder scheduler loop")
    parser.add_argument("--skip-install", action="store_true", help="do not reinstall the project into .venv")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="restart the API when source files change")
    args = parser.parse_args()

    python = prepare(args.skip_install)

    if args.scheduler:
        print(f"Checking reminders every {SCHEDULER_EVERY_MINUTES} minutes (Ctrl+C to stop)")
        return subprocess.run(scheduler_command(python), cwd=ROOT).returncode

    scheduler = subprocess.Popen(scheduler_command(python), cwd=ROOT) if args.both else None
    print(f"Quest Life API on http://{args.host}:{args.port}/api/user (Ctrl+C to stop)")
    try:
        return subprocess.run(server_command(python, args.host, args.port, args.reload), cwd=ROOT).returncode
    finally:
        if scheduler is not None and scheduler.poll() is None:
            scheduler.terminate()


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except KeyboardInterrupt:
        print("\nStopped.")
