#!/usr/bin/env python3
"""
Guardian Recovery command line interface.

    guardian-recovery serve [--host HOST] [--port PORT] [--debug]
    guardian-recovery serve --production [--threads N]
    guardian-recovery check
    guardian-recovery info [--json]
    guardian-recovery --version

Settings come from the environment; a ``.env`` file in the working
directory is loaded first.
"""

import argparse
import json
import os
import platform
import sys

from dotenv import load_dotenv

__version__ = "0.1.0"

OK, SKIP, FAIL = "ok", "skip", "fail"
_MARKS = {OK: "✓", SKIP: "○", FAIL: "✗"}


# =============================================================================
# serve
# =============================================================================


def _run_gunicorn(flask_app, bind: str, threads: int) -> int:
    try:
        from gunicorn.app.base import BaseApplication
    except ImportError:
        print("gunicorn is not installed; install guardian-recovery[production]")
        return 1

    settings = {
        "bind": bind,
        # Engine state lives in this process, so exactly one worker serves it
        "workers": 1,
        "worker_class": "gthread",
        "threads": threads,
        "timeout": 60,
        "accesslog": "-",
        "errorlog": "-",
    }

    class RecoveryServer(BaseApplication):
        def load_config(self):
            for key, value in settings.items():
                self.cfg.set(key, value)

        def load(self):
            return flask_app

    RecoveryServer().run()
    return 0


def cmd_serve(args) -> int:
    """Start the HTTP API."""
    from api import create_app

    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = args.port or int(os.getenv("PORT", "5000"))
    flask_app = create_app()

    print(f"Guardian Recovery API listening on {host}:{port}")
    if args.production:
        threads = args.threads or int(os.getenv("THREADS", "4"))
        return _run_gunicorn(flask_app, f"{host}:{port}", threads)

    debug = args.debug or os.getenv("FLASK_DEBUG", "").lower() == "true"
    # The reloader would build a second engine in a child process
    flask_app.run(host=host, port=port, debug=debug, use_reloader=False)
    return 0


# =============================================================================
# check
# =============================================================================


def _check_config():
    from recovery_config import RecoveryConfig

    try:
        config = RecoveryConfig.from_env()
    except ValueError as e:
        return FAIL, str(e)
    return OK, f"owner={config.initial_owner} stake={config.stake_amount}"


def _check_auth():
    from recovery_config import RecoveryConfig

    try:
        config = RecoveryConfig.from_env()
    except ValueError:
        return SKIP, "configuration invalid"
    if config.require_auth and not config.api_key:
        return FAIL, "RECOVERY_REQUIRE_AUTH is on but RECOVERY_API_KEY is unset"
    if not config.require_auth:
        return OK, "authentication disabled"
    return OK, "API key configured"


def _check_engine():
    from recovery_config import RecoveryConfig
    from recovery_machine import RecoveryRequestMachine

    try:
        RecoveryRequestMachine.from_config(RecoveryConfig.from_env())
    except ValueError as e:
        return FAIL, str(e)
    return OK, "engine builds"


def _check_gunicorn():
    try:
        import gunicorn
    except ImportError:
        return SKIP, "gunicorn not installed (only needed for --production)"
    return OK, f"gunicorn {gunicorn.__version__}"


CHECKS = [
    ("Configuration", _check_config),
    ("Authentication", _check_auth),
    ("Recovery engine", _check_engine),
    ("Production server", _check_gunicorn),
]


def cmd_check(args) -> int:
    """Validate configuration and optional components."""
    print("Guardian Recovery installation check")
    print()

    failed = 0
    for name, check in CHECKS:
        status, detail = check()
        failed += status == FAIL
        print(f"  {_MARKS[status]} {name}: {detail}")

    print()
    print("All checks passed." if not failed else f"{failed} check(s) failed.")
    return 1 if failed else 0


# =============================================================================
# info
# =============================================================================


def cmd_info(args) -> int:
    """Print version, runtime and effective policy."""
    from recovery_config import RecoveryConfig, get_recovery_config

    try:
        config = RecoveryConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1

    policy = get_recovery_config(config)
    if args.json:
        print(json.dumps({"version": __version__, "policy": policy}, indent=2))
        return 0

    print(f"Guardian Recovery {__version__} on Python {platform.python_version()}")
    print(f"Logging: level={os.getenv('LOG_LEVEL', 'INFO')} format={os.getenv('LOG_FORMAT', 'console')}")
    print()
    print("Policy:")
    print(json.dumps(policy, indent=2))
    return 0


# =============================================================================
# Entry point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="guardian-recovery",
        description="Reputation-weighted, time-locked social recovery engine",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address (default: $HOST or 0.0.0.0)")
    serve.add_argument("--port", type=int, help="Bind port (default: $PORT or 5000)")
    serve.add_argument("--debug", action="store_true", help="Flask debug mode")
    serve.add_argument("--production", action="store_true", help="Serve with gunicorn")
    serve.add_argument("--threads", type=int, help="gunicorn threads (default: $THREADS or 4)")
    serve.set_defaults(func=cmd_serve)

    check = commands.add_parser("check", help="Validate configuration")
    check.set_defaults(func=cmd_check)

    info = commands.add_parser("info", help="Show effective configuration")
    info.add_argument("--json", action="store_true", help="Machine-readable output")
    info.set_defaults(func=cmd_info)

    return parser


def main(argv=None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
