"""
PromptForge CLI entry point.

Provides command-line interface for running the API server and for one-shot
refine/generate calls against the configured providers.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from promptforge import __version__
from promptforge.config.logging import get_logger, setup_logging
from promptforge.config.settings import Settings, load_settings


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="promptforge",
        description="Prompt refinement gateway with quotas, caching and provider fallback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"PromptForge {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP API server",
    )
    serve_parser.add_argument(
        "--host",
        default=None,
        help="Interface to bind (default: SERVER_HOST from config)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind (default: SERVER_PORT from config)",
    )

    subparsers.add_parser(
        "config",
        help="Show current configuration",
    )

    refine_parser = subparsers.add_parser(
        "refine",
        help="Refine a prompt once and print the result (no quota, no cache)",
    )
    refine_parser.add_argument(
        "prompt",
        help='Prompt to refine, e.g. "Explain quantum computing in simple terms"',
    )
    refine_parser.add_argument(
        "--api-key",
        default=None,
        help="Use your own Gemini or Groq key instead of the server keys",
    )

    generate_parser = subparsers.add_parser(
        "generate",
        help="Generate output for a prompt and print it",
    )
    generate_parser.add_argument(
        "prompt",
        help="Prompt to send verbatim",
    )
    generate_parser.add_argument(
        "--api-key",
        default=None,
        help="Use your own Gemini or Groq key instead of the server keys",
    )

    return parser


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    logger.info("\n=== PromptForge Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"\nServer: {settings.server.host}:{settings.server.port}")
    logger.info(f"CORS Origin: {settings.server.allowed_origin}")
    logger.info(f"Trust Proxy Headers: {settings.server.trust_proxy_headers}")
    logger.info(f"\nGemini Model: {settings.providers.gemini_model}")
    logger.info(f"Gemini API Key: {'Set' if settings.providers.gemini_api_key else 'Not set'}")
    logger.info(f"Groq Model: {settings.providers.groq_model}")
    logger.info(f"Groq API Key: {'Set' if settings.providers.groq_api_key else 'Not set'}")
    logger.info(f"Request Timeout: {settings.providers.request_timeout}s")
    logger.info(f"\nQuotas Enabled: {settings.quota.enabled}")
    logger.info(f"  Daily Free Requests: {settings.quota.daily_free_requests}")
    logger.info(f"  Rate Limit: {settings.quota.rate_limit_per_hour}/"
                f"{settings.quota.rate_limit_window_seconds}s")
    logger.info(f"  Cache TTL: {settings.quota.cache_ttl_seconds}s")
    logger.info(f"  Gemini Daily Ceiling: {settings.quota.gemini_daily_ceiling}")
    logger.info(f"\nSession Database: {settings.storage.database_path}")

    return 0


def cmd_serve(args, settings: Settings) -> int:
    """Start the HTTP API server."""
    logger = get_logger(__name__)

    import uvicorn

    from promptforge.api import create_app

    host = args.host or settings.server.host
    port = args.port or settings.server.port

    if not settings.providers.gemini_api_key and not settings.providers.groq_api_key:
        logger.warning(
            "No server API keys set (PROVIDER_GEMINI_API_KEY / PROVIDER_GROQ_API_KEY). "
            "Only requests carrying their own user_api_key will succeed."
        )

    app = create_app(settings)
    logger.info(f"Starting PromptForge API on {host}:{port}...")
    # log_config=None: keep uvicorn from replacing our logging setup
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


async def cmd_refine(args, settings: Settings) -> int:
    """Refine one prompt and print the result."""
    from promptforge.api.services import GatewayServices
    from promptforge.gateway.utils import sanitize_input
    from promptforge.llm import LLMError

    services = GatewayServices.from_settings(settings)
    prompt = sanitize_input(args.prompt)
    if not prompt:
        print("Prompt is empty after sanitizing.", file=sys.stderr)
        return 1

    try:
        result = await services.orchestrator.refine(prompt, args.api_key)
    except LLMError as e:
        print(f"\nLLM error: {e}", file=sys.stderr)
        print("Tip: Set PROVIDER_GEMINI_API_KEY or PROVIDER_GROQ_API_KEY in your .env file, "
              "or pass --api-key.", file=sys.stderr)
        return 1

    print("\n=== Refined Prompt ===")
    print(result.refined_prompt)
    print(f"\nModel: {result.model}")
    return 0


async def cmd_generate(args, settings: Settings) -> int:
    """Generate output for one prompt and print it."""
    from promptforge.api.services import GatewayServices
    from promptforge.llm import LLMError

    services = GatewayServices.from_settings(settings)

    try:
        result = await services.orchestrator.generate(args.prompt, args.api_key)
    except LLMError as e:
        print(f"\nLLM error: {e}", file=sys.stderr)
        return 1

    print(result.output)
    print(f"\nModel: {result.model} | ~{result.tokens} tokens")
    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Override log level if specified
    if args.log_level:
        settings.log_level = args.log_level

    setup_logging(settings)

    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "serve":
        return cmd_serve(args, settings)
    elif args.command == "refine":
        return asyncio.run(cmd_refine(args, settings))
    elif args.command == "generate":
        return asyncio.run(cmd_generate(args, settings))
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
