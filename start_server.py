#!/usr/bin/env python3
"""
Launch the CQL-OMOP MCP server in its own process.

Uses the project's .venv interpreter when there is one. Status messages go to
stderr: stdout belongs to the MCP stdio protocol.
"""

import os
import sys
import subprocess
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent


def find_python() -> str:
    venv = PROJECT_ROOT / ".venv"
    candidate = venv / "Scripts" / "python.exe" if os.name == "nt" else venv / "bin" / "python"
    if candidate.exists():
        return str(candidate)
    return sys.executable


def build_env() -> dict:
    env = os.environ.copy()
    src_path = str(PROJECT_ROOT / "src")
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = f"{src_path}{os.pathsep}{existing}" if existing else src_path
    return env


def log(message: str):
    print(message, file=sys.stderr)


def start_mcp_server() -> int:
    python_exe = find_python()
    log(f"Starting CQL-OMOP MCP Server with {python_exe}")

    process = subprocess.Popen(
        [python_exe, "-m", "cql_omop.main"],
        cwd=str(PROJECT_ROOT),
        env=build_env(),
        stdin=sys.stdin,
        stdout=sys.stdout,
        stderr=sys.stderr
    )

    try:
        return_code = process.wait()
    except KeyboardInterrupt:
        log("Interrupt received, stopping server...")
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
        return 0

    if return_code != 0:
        log(f"Server exited with code: {return_code}")
    return return_code


if __name__ == "__main__":
    sys.exit(start_mcp_server())
