"""
Main entry point for the CodeBattle server.

This module provides the command-line interface that starts the contest API
server.
"""

import argparse
import sys

from .api.server import run_api
from .utils.config_manager import get_config
from .utils.logger_config import get_logger, setup_logging_from_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='CodeBattle - proctored team programming contest server')

    # Server configuration
    parser.add_argument('--config', default='config/server_config.json',
                        help='Path to server configuration file')
    parser.add_argument('--host', help='Host to bind the API server')
    parser.add_argument('--port', type=int, help='Port to bind the API server')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')

    # Logging configuration
    parser.add_argument('--log-level',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Override log level')
    parser.add_argument('--log-dir', help='Override log directory')

    # Storage configuration
    parser.add_argument('--storage', choices=['json', 'duckdb'], help='Override storage backend')
    parser.add_argument('--data-file', help='Override JSON state file path')
    parser.add_argument('--db-path', help='Override DuckDB database path')

    # Judge configuration
    parser.add_argument('--judge', choices=['llm', 'oj'], help='Override judge backend')
    parser.add_argument('--oj-endpoint', help='Override online judge endpoint')
    parser.add_argument('--model-id', help='Override LLM judge model')

    # Contest policy
    parser.add_argument('--auto-finish', action='store_true',
                        help='Finish the contest automatically when the time is up')
    return parser


def apply_overrides(config, args) -> None:
    """Copy command line flags onto the configuration"""
    overrides = {
        "server.host": args.host,
        "server.port": args.port,
        "log.level": args.log_level,
        "log.dir": args.log_dir,
        "storage.backend": args.storage,
        "storage.json_path": args.data_file,
        "storage.duckdb_path": args.db_path,
        "judge.backend": args.judge,
        "judge.oj.endpoint": args.oj_endpoint,
        "judge.llm.model_id": args.model_id,
    }
    for key, value in overrides.items():
        if value is not None:
            config.set(key, value)
    if args.auto_finish:
        config.set("contest.auto_finish_on_expiry", True)
    if args.debug:
        config.set("log.level", "DEBUG")


def main(argv=None):
    """Main entry point for the CodeBattle CLI"""
    args = build_parser().parse_args(argv)

    config = get_config(args.config)
    apply_overrides(config, args)

    log_file = setup_logging_from_config(config)
    logger = get_logger("main")

    host = config.get("server.host", "0.0.0.0")
    port = config.get("server.port", 3000)
    logger.info(f"Starting CodeBattle server on {host}:{port}")
    logger.info(f"Configuration loaded from: {config.config_path}")
    logger.info(f"Logging to {log_file}")
    logger.info(f"Storage: {config.get('storage.backend')}, judge: {config.get('judge.backend')}")

    try:
        run_api(host=host, port=port, debug=args.debug, config=config)
    except KeyboardInterrupt:
        logger.info("Shutting down CodeBattle server...")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Error starting API server: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
