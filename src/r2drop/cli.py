"""CLI entry point for r2drop."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from r2drop.client import R2Client
from r2drop.config import R2DropConfig, load_config
from r2drop.errors import R2DropError
from r2drop.logging_config import configure_logging
from r2drop.metrics import init_metrics
from r2drop.xml_utils import DEFAULT_CORS_METHODS, LifecycleRule

logger = logging.getLogger("r2drop")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="r2drop",
        description="r2drop - upload files to Cloudflare R2 and share presigned links",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("r2drop.yaml"),
        help="Path to YAML configuration file (default: r2drop.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config, default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    upload = commands.add_parser("upload", help="Upload a file and print its download URL")
    upload.add_argument("file", type=Path, help="File to upload")
    upload.add_argument("--name", default=None, help="Object name (default: the file name)")
    upload.add_argument("--content-type", default=None, help="MIME type (default: guessed)")
    upload.add_argument(
        "--keep-name",
        action="store_true",
        help="Use the sanitized file name as the key instead of a random one",
    )
    upload.add_argument("--expires", type=int, default=None, help="URL lifetime in seconds")
    upload.add_argument(
        "--no-progress", action="store_true", help="Do not print upload progress"
    )

    presign = commands.add_parser("presign", help="Print a download URL for an object")
    presign.add_argument("key", help="Object key")
    presign.add_argument("--expires", type=int, default=None, help="URL lifetime in seconds")

    delete = commands.add_parser("delete", help="Delete an object")
    delete.add_argument("key", help="Object key")

    cors = commands.add_parser("cors", help="Bucket CORS configuration")
    cors_commands = cors.add_subparsers(dest="cors_command", required=True)
    cors_commands.add_parser("get", help="Report whether a CORS configuration exists")
    cors_put = cors_commands.add_parser("put", help="Install a CORS rule")
    cors_put.add_argument("origins", nargs="+", help="Allowed origins")
    cors_put.add_argument(
        "--methods",
        nargs="+",
        default=list(DEFAULT_CORS_METHODS),
        help="Allowed methods (default: GET PUT POST DELETE HEAD)",
    )
    cors_put.add_argument("--max-age", type=int, default=3000, help="Preflight cache seconds")

    lifecycle = commands.add_parser("lifecycle", help="Bucket lifecycle configuration")
    lifecycle_commands = lifecycle.add_subparsers(dest="lifecycle_command", required=True)
    lifecycle_put = lifecycle_commands.add_parser("put", help="Install an expiration rule")
    lifecycle_put.add_argument("--id", default="r2drop-expire", help="Rule id")
    lifecycle_put.add_argument("--days", type=int, required=True, help="Expire after N days")
    lifecycle_put.add_argument("--prefix", default="", help="Key prefix the rule applies to")
    lifecycle_put.add_argument(
        "--abort-incomplete-days",
        type=int,
        default=None,
        help="Abort unfinished multipart uploads after N days",
    )
    lifecycle_commands.add_parser("delete", help="Remove the lifecycle configuration")

    return parser.parse_args(argv)


def _print_progress(percent: float) -> None:
    print(f"\r{percent:5.1f}%", end="", file=sys.stderr, flush=True)


async def run(args: argparse.Namespace, config: R2DropConfig) -> int:
    """Execute the selected subcommand.

    Returns:
        The process exit code.
    """
    async with R2Client.from_config(config, config_path=args.config) as client:
        if args.command == "upload":
            result = await client.upload_file(
                args.file,
                name=args.name,
                content_type=args.content_type,
                hash_file_names=not args.keep_name,
                on_progress=None if args.no_progress else _print_progress,
                expires=args.expires,
            )
            if not args.no_progress:
                print(file=sys.stderr)
            print(result.file_id)
            print(result.url)
        elif args.command == "presign":
            print(await client.generate_url(args.key, args.expires))
        elif args.command == "delete":
            await client.delete_file(args.key)
        elif args.command == "cors":
            if args.cors_command == "get":
                configured = await client.get_cors()
                print("configured" if configured else "not configured")
                return 0 if configured else 1
            await client.put_cors(
                args.origins,
                allowed_methods=args.methods,
                max_age_seconds=args.max_age,
            )
        elif args.command == "lifecycle":
            if args.lifecycle_command == "put":
                rule = LifecycleRule(
                    id=args.id,
                    expiration_days=args.days,
                    prefix=args.prefix,
                    abort_incomplete_days=args.abort_incomplete_days,
                )
                await client.put_lifecycle([rule])
            else:
                await client.delete_lifecycle()
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the r2drop CLI.

    Loads configuration, applies CLI overrides and runs the subcommand.
    Credentials are read from the config file's ``storage`` section.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    # Use a basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    configure_logging(
        level=args.log_level or config.logging.level,
        fmt=args.log_format or config.logging.format,
    )
    if config.metrics.enabled:
        init_metrics()

    try:
        code = asyncio.run(run(args, config))
    except R2DropError as exc:
        logger.error("%s: %s", exc.code, exc.message)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
