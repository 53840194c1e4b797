from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(SCRIPT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


def load_env_file(env_path: str) -> None:
    if not os.path.exists(env_path):
        return
    with open(env_path, "r", encoding="utf-8") as env_file:
        for line in env_file:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            os.environ.setdefault(key, value)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Detect producer activity patterns and auto-resolve stale findings."
    )
    parser.add_argument(
        "--env-file",
        default=os.path.join(PROJECT_ROOT, ".env"),
        help="Environment file path (default: project .env).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL for this run.",
    )
    return parser.parse_args()


def run_detection() -> Dict[str, Any]:
    from src.api.dependencies import get_pattern_detection_service

    summary = get_pattern_detection_service().detect_patterns()
    return summary.model_dump(by_alias=True)


def main() -> int:
    args = parse_args()
    load_env_file(os.path.abspath(args.env_file))

    from src.core.config import get_settings
    from src.core.logging import configure_logging

    configure_logging(args.log_level or get_settings().log_level)
    try:
        result = run_detection()
    except Exception as exc:
        logging.getLogger("detect_patterns").exception("Pattern detection failed")
        print(json.dumps({"success": False, "error": str(exc)}, indent=2))
        return 1
    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
