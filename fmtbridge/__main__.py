# fmtbridge/__main__.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .core.errors import FormatError
from .core.pool import PLUGIN_STATE_LOADED, PluginPool
from .utils.config import load_settings, load_yaml_config, pool_config
from .utils.logger import setup_logger


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="fmtbridge", description="Format files with sandboxed wasm plugins")
    parser.add_argument("files", nargs="*", help="files to format")
    parser.add_argument("--config", default=None, help="host configuration YAML file")
    parser.add_argument("--plugins-dir", default=None, help="directory with compiled *.compiled plugins")
    parser.add_argument("--check", action="store_true", help="report files that need formatting without writing")
    parser.add_argument("--list", action="store_true", help="print loaded plugins as JSON")
    parser.add_argument("--log-level", default=None)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = _parse_args(argv)

    settings = load_settings(args.config)
    yaml_config = load_yaml_config(args.config)
    logger = setup_logger(
        "fmtbridge",
        level=args.log_level or settings.LOG_LEVEL,
        log_dir=settings.LOG_DIR or None,
        retention_days=settings.LOG_RETENTION_DAYS,
    )

    if not args.files and not args.list:
        print("no files given", file=sys.stderr)
        return 2

    pool = PluginPool(config=pool_config(settings, yaml_config))
    plugins_dir = Path(args.plugins_dir or settings.PLUGINS_DIR)
    plugins = pool.load_directory(plugins_dir)
    if not any(p["status"] == PLUGIN_STATE_LOADED for p in plugins):
        logger.error("No usable plugins found in %s", plugins_dir)

    if args.list:
        print(json.dumps(plugins, indent=2))
        if not args.files:
            return 0

    exit_code = 0
    try:
        for name in args.files:
            path = Path(name)
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.error("Cannot read %s: %s", path, exc)
                exit_code = max(exit_code, 1)
                continue

            try:
                result = pool.format_text(str(path), text)
            except FormatError as exc:
                logger.error("Error formatting %s: %s", path, exc)
                exit_code = max(exit_code, 1)
                continue

            if result is None or result == text:
                logger.debug("Already formatted: %s", path)
                continue
            if args.check:
                print(f"needs formatting: {path}")
                exit_code = max(exit_code, 1)
            else:
                path.write_text(result, encoding="utf-8")
                logger.info("Formatted %s", path)
    finally:
        pool.shutdown()
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
