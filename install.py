#!/usr/bin/env python3
"""Bootstrap a local billing-copilot environment.

Usage:
    python install.py          # virtualenv + package
    python install.py --dev    # also installs the test extra
"""

import shutil
import subprocess
import sys
from pathlib import Path

MIN_PYTHON = (3, 11)
PROJECT_DIR = Path(__file__).resolve().parent
VENV_DIR = PROJECT_DIR / ".venv"
CONFIG_FILES = {"config.example.yaml": "config.yaml", ".env.example": ".env"}


def venv_python() -> Path:
    scripts = "Scripts" if sys.platform == "win32" else "bin"
    return VENV_DIR / scripts / "python"


def copy_missing_config() -> None:
    for example, target in CONFIG_FILES.items():
        target_path = PROJECT_DIR / target
        if target_path.exists():
            print(f"{target} already exists, keeping it.")
        elif (PROJECT_DIR / example).exists():
            shutil.copy(PROJECT_DIR / example, target_path)
            print(f"Created {target} from {example}")


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(f"billing-copilot needs Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]} or newer.")

    if not VENV_DIR.is_dir():
        print("Creating .venv ...")
        subprocess.check_call([sys.executable, "-m", "venv", str(VENV_DIR)])

    python = str(venv_python())
    packages = ["-e", ".[test]"] if "--dev" in sys.argv else ["."]
    subprocess.check_call([python, "-m", "pip", "install", *packages], cwd=PROJECT_DIR)

    copy_missing_config()

    # API keys are usually still empty right after install.
    if subprocess.call([python, "-m", "billing_copilot", "config-check"], cwd=PROJECT_DIR) != 0:
        print("Set a provider API key in .env, then run: python -m billing_copilot config-check")
        return

    print("Ready. Start a session with: python -m billing_copilot chat")


if __name__ == "__main__":
    main()
