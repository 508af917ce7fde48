"""Registry UI - browse a container registry and purge old tags.

Main entry point: serves the API or runs a one-shot purge.

Usage:
  python main.py
  python main.py --config-file /etc/registry-ui/config.yml
  python main.py --purge-tags --dry-run
  python main.py --purge-tags --purge-from-repos team/app,library/nginx
"""

import argparse
import sys

import uvicorn

from registry_ui.config import ConfigError, load_config
from registry_ui.logging_config import setup_all_logging
from registry_ui.purge import purge_old_tags
from registry_ui.registry.client import Registry
from registry_ui.registry.exceptions import RegistryError
from registry_ui.ui.server import create_app


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Registry UI - registry browser and tag purger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve the API using config.yml from the current directory
  python main.py

  # Show what would be purged without deleting anything
  python main.py --purge-tags --dry-run
        """,
    )

    parser.add_argument(
        "-c",
        "--config-file",
        default=None,
        help="Path to the config file (default: $REGISTRY_UI_CONFIG or config.yml)",
    )
    parser.add_argument(
        "--purge-tags",
        action="store_true",
        help="Purge old tags instead of running the web server",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry-run for the purging task, does not delete anything",
    )
    parser.add_argument(
        "--purge-from-repos",
        default="",
        help="Comma-separated repositories to purge (default: all)",
    )
    return parser.parse_args(argv)


def run_purge(config, dry_run: bool, purge_from_repos: str) -> int:
    repos = [r.strip() for r in purge_from_repos.split(",") if r.strip()]
    with Registry(config.registry_config()) as client:
        result = purge_old_tags(
            client, config.purge_tags.policy(), dry_run=dry_run, repos=repos or None
        )
    if result is None or result.failed:
        return 1
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config_file)
    except ConfigError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    logger = setup_all_logging(config.log_level)

    try:
        if args.purge_tags:
            return run_purge(config, args.dry_run, args.purge_from_repos)

        host, port = config.listen_host_port
        uvicorn.run(create_app(config), host=host, port=port)
        return 0

    except (ConfigError, RegistryError) as e:
        logger.error(f"Fatal: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
