#!/usr/bin/env python
"""Start the Delegation Hub API under uvicorn.

Command-line flags are written into the environment before the app module
is imported, so they win over ``configs/app.yaml`` and ``.env`` exactly like
the ``APP_*``/``HUB_*`` variables they stand for.

    python scripts/run_server.py
    python scripts/run_server.py --mode prod --port 8080
    python scripts/run_server.py --state-store file --max-depth 3
"""

import argparse
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from delegation_hub.utils.config import AppConfig

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# flag -> environment variable it overrides
FLAG_ENV = {
    "host": "APP_HOST",
    "port": "APP_PORT",
    "max_depth": "HUB_MAX_DEPTH",
    "max_concurrency": "HUB_MAX_CONCURRENCY",
    "task_timeout": "HUB_TASK_TIMEOUT",
    "max_retained": "HUB_MAX_RETAINED",
    "state_store": "STATE_STORE_BACKEND",
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Delegation Hub server")
    parser.add_argument("--mode", choices=["dev", "prod"], default="dev")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    parser.add_argument("--max-depth", type=int, help="deepest delegation allowed")
    parser.add_argument("--max-concurrency", type=int, help="hub-wide running cap")
    parser.add_argument("--task-timeout", type=float, help="default seconds per task")
    parser.add_argument("--max-retained", type=int, help="finished executions kept")
    parser.add_argument("--state-store", choices=["memory", "file"])
    parser.add_argument(
        "--log-level", choices=["debug", "info", "warning", "error"]
    )
    parser.add_argument("--config", type=Path, help="YAML settings file")
    parser.add_argument("--env-file", type=Path)
    return parser.parse_args(argv)


def print_banner(config: "AppConfig", mode: str, log_level: str) -> None:
    from rich.console import Console
    from rich.table import Table

    table = Table(title=f"Delegation Hub ({mode})", show_header=False)
    table.add_row("listen", f"{config.app.host}:{config.app.port}")
    for key, value in config.describe().items():
        table.add_row(key.replace("_", " "), str(value))
    table.add_row("log level", log_level)
    Console().print(table)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    for flag, variable in FLAG_ENV.items():
        value = getattr(args, flag)
        if value is not None:
            os.environ[variable] = str(value)

    import uvicorn

    from delegation_hub.utils.config import init_config

    config_path = args.config
    if config_path is None and (PROJECT_ROOT / "configs" / "app.yaml").is_file():
        config_path = PROJECT_ROOT / "configs" / "app.yaml"
    config = init_config(yaml_path=config_path, env_file=args.env_file)

    dev = args.mode == "dev"
    log_level = args.log_level or ("info" if dev else "warning")
    print_banner(config, args.mode, log_level)

    # One process only: executions are not shared between workers.
    uvicorn.run(
        "delegation_hub.main:app",
        host=config.app.host,
        port=config.app.port,
        reload=dev,
        reload_dirs=[str(PROJECT_ROOT / "delegation_hub")] if dev else None,
        log_level=log_level,
        access_log=dev,
    )


if __name__ == "__main__":
    main()
