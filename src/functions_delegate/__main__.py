"""CLI entrypoints for local development (detect, build, discover, serve)."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

import structlog

from functions_delegate import __version__
from functions_delegate.core.config import get_settings
from functions_delegate.core.exceptions import FunctionsDelegateError
from functions_delegate.core.models import DelegateContext
from functions_delegate.delegate import get_runtime_delegate
from functions_delegate.utils.logging import bind_delegate_context, setup_logging
from functions_delegate.utils.ports import release_port, reserve_port

logger = structlog.get_logger()


def _parse_env(pairs):
    env = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise SystemExit(f"Invalid --env value (expected KEY=VALUE): {pair}")
        key, value = pair.split("=", 1)
        env[key] = value
    return env


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="functions-delegate", description="Python functions runtime delegate")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--project", default="demo-project", help="Project identifier")
    parser.add_argument("--runtime", default=None, help="Runtime identifier (default: latest Python)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    for name, help_text in (
        ("detect", "Report whether the source directory is a Python functions source"),
        ("build", "Generate the admin entrypoint"),
        ("discover", "Print the discovered functions as JSON"),
        ("serve", "Build and serve the admin entrypoint until interrupted"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("source", help="Functions source directory")
        if name in ("discover", "serve"):
            cmd.add_argument("--env", action="append", metavar="KEY=VALUE", help="Extra environment variable")
        if name == "serve":
            cmd.add_argument("--port", type=int, default=None, help="Port to bind (default: first free from 8081)")

    return parser


async def _discover(delegate, envs) -> None:
    manifest = Path(delegate.source_dir) / delegate.settings.manifest_file
    if not manifest.is_file():
        await delegate.build()
    discovered = await delegate.discover_build(envs)
    print(json.dumps(discovered.model_dump(mode="json", by_alias=True), indent=2))


async def _serve(delegate, port, envs) -> None:
    await delegate.build()
    reserved = port is None
    if reserved:
        port = reserve_port(delegate.settings.discovery_start_port)
    try:
        shutdown = await delegate.serve_admin(port, envs)
        print(f"Serving admin entrypoint on http://{delegate.settings.admin_host}:{port}")
        try:
            await asyncio.Event().wait()
        finally:
            await shutdown()
    finally:
        if reserved:
            release_port(port)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    source = str(Path(args.source).resolve())
    bind_delegate_context(project_id=args.project, source_dir=source)
    context = DelegateContext(project_id=args.project, source_dir=source, runtime=args.runtime)

    try:
        delegate = get_runtime_delegate(context, settings=settings)
        if args.cmd == "detect":
            print(f"{delegate.name} ({delegate.runtime})")
        elif args.cmd == "build":
            path = asyncio.run(delegate.build())
            print(path)
        elif args.cmd == "discover":
            asyncio.run(_discover(delegate, _parse_env(args.env)))
        elif args.cmd == "serve":
            asyncio.run(_serve(delegate, args.port, _parse_env(args.env)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except FunctionsDelegateError as e:
        logger.error("Command failed", command=args.cmd, error=str(e), code=e.code)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
