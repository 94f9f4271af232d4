"""Command line entry point: ``python -m photo_entitlements``.

Options are exported as the environment variables that ``config.py`` and
``main.py`` read, because uvicorn imports the app by name (and again in
every reload worker).
"""

import argparse
import os
from typing import Optional, Sequence

import uvicorn

# Option name -> environment variable read by the app
ENV_EXPORTS = {
    "config": "CONFIG_PATH",
    "log_level": "LOG_LEVEL",
    "log_format": "LOG_FORMAT",
    "assets_root": "ASSETS_ROOT",
    "database_url": "DATABASE_URL",
    "signing_secret": "NOTIFICATION_SIGNING_SECRET",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="photo-entitlements",
        description="Record photo store purchases and serve each purchased download once.",
    )
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/store.yaml"),
        help="store.yaml to load",
    )
    parser.add_argument(
        "--assets-root",
        help="Directory holding purchasable originals (overrides downloads.assets_root)",
    )
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy URL of the entitlement store (overrides storage.database_url)",
    )
    parser.add_argument(
        "--signing-secret",
        help="Require notifications signed with this secret",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
    )
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    return parser


def export_settings(args: argparse.Namespace) -> None:
    """Copy given options into the environment for the app to pick up."""
    for option, variable in ENV_EXPORTS.items():
        value = getattr(args, option)
        if value is not None:
            os.environ[variable] = str(value)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    export_settings(args)

    uvicorn.run(
        "photo_entitlements.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        reload=args.reload,
        access_log=False,  # RequestLoggingMiddleware logs requests
    )


if __name__ == "__main__":
    main()
