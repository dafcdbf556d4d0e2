#!/usr/bin/env python
import os
import sys
from pathlib import Path

# Some embedded Python distributions run in isolated/safe-path mode and
# omit the script directory from sys.path. Ensure local project imports
# (e.g. ramexpo_api.settings) still resolve.
BACKEND_DIR = str(Path(__file__).resolve().parent)
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)


def main() -> None:
    if len(sys.argv) > 1 and sys.argv[1] == "test":
        os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ramexpo_api.settings_test")
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ramexpo_api.settings")
    try:
        from django.core.management import execute_from_command_line
    except ImportError as exc:
        raise ImportError(
            "Couldn't import Django. Are the backend requirements installed?"
        ) from exc
    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
