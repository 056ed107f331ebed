"""
Command-line entry point for the query pipeline.
Provides an interactive loop for sending natural-language requests to a backend.
"""

import json
import logging
import sys

import colorlog

from .core.config import load_configuration
from .core.errors import PipelineError
from .core.models import BackendType, QueryResult
from .core.pipeline import QueryPipeline


def setup_logging(level: str = "INFO"):
    """Configure colored logging."""
    handler = colorlog.StreamHandler()
    handler.setFormatter(colorlog.ColoredFormatter(
        '%(log_color)s%(levelname)-8s%(reset)s %(blue)s%(name)s%(reset)s %(message)s',
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        }
    ))

    logger = colorlog.getLogger()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def print_response(response):
    """Pretty print a pipeline response."""
    print("\n" + "=" * 80)

    if not isinstance(response, QueryResult):
        print("Query is valid")
        print(f"  {response.query}")
        print("=" * 80)
        return

    rows = response.rows
    print(f"Results: {len(rows)} record(s)")
    for i, row in enumerate(rows[:5], 1):
        print(f"  {i}. {json.dumps(row, default=str)}")
    if len(rows) > 5:
        print(f"  ... and {len(rows) - 5} more records")
    if response.metadata:
        print(f"Metadata: {json.dumps(response.metadata, default=str)}")

    print("=" * 80)


def run_cli(pipeline: QueryPipeline, backend: BackendType):
    """Run the interactive CLI."""
    validate_only = False

    print("\n" + "=" * 80)
    print("Multi-database natural-language query")
    print("=" * 80)
    print("\nCommands:")
    print("  - Type your question in natural language")
    print("  - 'use <backend>' to switch backend")
    print("  - 'backends' to list available backends")
    print("  - 'schema' to see the current backend's schema")
    print("  - 'validate' to toggle validate-only mode")
    print("  - 'exit' or 'quit' to exit")
    print("=" * 80 + "\n")

    while True:
        try:
            user_input = input(f"[{backend.value}{' validate' if validate_only else ''}] You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        if not user_input:
            continue

        command = user_input.lower()
        if command in ['exit', 'quit', 'q']:
            print("\nGoodbye!")
            break

        try:
            if command == 'backends':
                available = pipeline.registry.available_backends()
                print(", ".join(b.value for b in available) or "No backends available")
            elif command == 'schema':
                print(pipeline.schema_text(backend) or "(no tables found)")
            elif command == 'validate':
                validate_only = not validate_only
                print(f"Validate-only mode {'on' if validate_only else 'off'}")
            elif command.startswith('use '):
                backend = BackendType.parse(user_input[4:])
                print(f"Using {backend.value}")
            else:
                response = pipeline.execute(user_input, backend, validate_only=validate_only)
                print_response(response)
        except PipelineError as e:
            print(f"\nError: {e}")


def main():
    """Main application entry point."""
    config = load_configuration()
    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    try:
        pipeline = QueryPipeline.from_config(config)
    except Exception as e:
        logger.error(f"Failed to initialize pipeline: {e}", exc_info=True)
        sys.exit(1)

    if not pipeline.registry.available_backends():
        logger.warning("No backends available - configure connection settings in .env")

    try:
        run_cli(pipeline, config.default_backend)
    finally:
        pipeline.shutdown()


if __name__ == "__main__":
    main()
