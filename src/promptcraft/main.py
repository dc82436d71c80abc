"""
Command line entry point for promptcraft.

    promptcraft generate "Build a timer" [--single | --multi] [--output app.jsx] [--quiet]
    promptcraft serve [--host HOST] [--port PORT] [--reload]
"""

import argparse
import asyncio
import sys
from pathlib import Path

import uvicorn

from . import __version__
from .config.container import setup_container
from .config.settings import get_settings
from .core.models import GenerationState, GenerationStatus, PipelineMode
from .core.notifier import ThrottledPublisher
from .observability.logging import get_logger, setup_logging
from .observability.tracing import setup_tracing, shutdown_tracing

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="promptcraft", description="Turn a prompt into a React app")
    parser.add_argument("--version", action="version", version=f"promptcraft {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    generate = subparsers.add_parser("generate", help="Run one generation and print the App component")
    generate.add_argument("prompt", help="What to build")
    mode = generate.add_mutually_exclusive_group()
    mode.add_argument("--single", dest="mode", action="store_const", const=PipelineMode.SINGLE, help="Coder only")
    mode.add_argument("--multi", dest="mode", action="store_const", const=PipelineMode.MULTI, help="All four stages")
    generate.add_argument("--output", "-o", type=Path, default=None, help="Write the component to this file")
    generate.add_argument("--instructions", default=None, help="Extra instructions for every stage")
    generate.add_argument("--quiet", "-q", action="store_true", help="Do not print progress")

    serve = subparsers.add_parser("serve", help="Start the HTTP API")
    serve.add_argument("--host", default=None, help="Host to bind to")
    serve.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload")

    return parser


def _progress_printer(store):
    def _print(_state: GenerationState) -> None:
        print(f"[{store.progress_fraction:>4.0%}] {store.phase_description}", file=sys.stderr)

    return _print


async def run_generation(args: argparse.Namespace) -> int:
    container = setup_container()
    async with container.lifespan():
        orchestrator = container.get("orchestrator")
        publisher = None
        if not args.quiet:
            publisher = ThrottledPublisher(
                orchestrator.store,
                _progress_printer(orchestrator.store),
                min_interval=container.settings.pipeline.notify_interval,
            )
        try:
            state = await orchestrator.generate(args.prompt, mode=args.mode, extra_instructions=args.instructions)
        finally:
            if publisher:
                publisher.close()

        summary = orchestrator.store.execution_summary
        if summary:
            print(summary, file=sys.stderr)

    if state.status is not GenerationStatus.SUCCESS:
        print(f"Generation failed: {state.error}", file=sys.stderr)
        return 1

    if args.output:
        args.output.write_text(state.final_artifact, encoding="utf-8")
        print(f"Wrote {len(state.final_artifact)} characters to {args.output}", file=sys.stderr)
    else:
        print(state.final_artifact)
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    settings = get_settings()
    setup_logging(settings.observability.log_level)
    if settings.observability.enable_tracing:
        setup_tracing(
            service_name=settings.observability.service_name,
            service_version=settings.observability.service_version,
            otlp_endpoint=settings.observability.otlp_endpoint,
        )

    try:
        if args.command == "generate":
            return asyncio.run(run_generation(args))

        uvicorn.run(
            "promptcraft.api.server:app",
            host=args.host or settings.api.host,
            port=args.port or settings.api.port,
            reload=args.reload or settings.api.reload,
        )
        return 0
    finally:
        shutdown_tracing()


def cli_main():
    """CLI entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\npromptcraft interrupted", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        logger.error(f"promptcraft failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
