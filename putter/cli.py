import argparse
from collections.abc import Sequence
from typing import Any

from putter.core.config import Settings

_FLAG_TO_SETTING = {
    "bind": "HOST",
    "port": "SERVICE_PORT",
    "wiki": "WIKI_PATH",
    "archive": "ARCHIVE_ENABLED",
    "archive_dir": "ARCHIVE_DIR",
    "archive_format": "ARCHIVE_FORMAT",
    "serve_archive": "SERVE_ARCHIVE",
    "archive_path": "ARCHIVE_PATH",
    "compress": "COMPRESS_ENABLED",
    "log_level": "LOG_LEVEL",
}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve a single wiki file with conditional PUT saving")
    parser.add_argument("--bind", type=str, help="interface to which the server will bind")
    parser.add_argument("--port", type=int, help="port on which the server will listen")
    parser.add_argument("--wiki", type=str, help="wiki file to serve")
    parser.add_argument("--archive", action=argparse.BooleanOptionalAction, default=None, help="preserve edit history in --archive-dir")
    parser.add_argument("--archive-dir", type=str, help="directory in which edit history will be preserved")
    parser.add_argument("--archive-format", type=str, help="strftime format of archive file names (UTC); include %%f, since a save whose entry name already exists is refused")
    parser.add_argument("--serve-archive", action=argparse.BooleanOptionalAction, default=None, help="serve edit history over HTTP at --archive-path")
    parser.add_argument("--archive-path", type=str, help="path at which edit history will be served over HTTP")
    parser.add_argument("--compress", action=argparse.BooleanOptionalAction, default=None, help="also keep a gzipped copy of the wiki")
    parser.add_argument("--log-level", type=str, help="logging level")
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict[str, Any] = {}
    for flag, setting in _FLAG_TO_SETTING.items():
        value = getattr(args, flag)
        if value is not None:
            overrides[setting] = value
    return Settings(**overrides)


def main(argv: Sequence[str] | None = None) -> int:
    import uvicorn

    from putter.core.logging import configure_logging
    from putter.main import create_app

    cfg = settings_from_args(parse_args(argv))
    configure_logging(cfg.LOG_LEVEL)
    uvicorn.run(create_app(cfg), host=cfg.HOST, port=cfg.SERVICE_PORT, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
