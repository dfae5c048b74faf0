"""Command-line entry point: ``webgate run`` and ``webgate tools``."""
import argparse
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from webgate_mcp_server import __version__
from webgate_mcp_server.config import load_config
from webgate_mcp_server.constants import ToolMode
from webgate_mcp_server.exceptions import ConfigurationError
from webgate_mcp_server.utils import configure_logging, get_logger

logger = get_logger("webgate_mcp_server.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webgate",
        description="Webgate MCP Server: remote browser automation and unblocked scraping over MCP",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="Path to a YAML or JSON config file")
    common.add_argument("--pro", action="store_true", help="Enable the expanded tool set (same as PRO_MODE=true)")

    subparsers = parser.add_subparsers(dest="command")
    run = subparsers.add_parser("run", parents=[common], help="Start the MCP server")
    run.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default=None,
        help="MCP transport (overrides config)",
    )
    run.add_argument("--host", default=None, help="Host to bind network transports to (overrides config)")
    run.add_argument("--port", type=int, default=None, help="Port to bind network transports to (overrides config)")
    run.add_argument("--log-level", default=None, help="Log level (overrides config)")

    subparsers.add_parser("tools", parents=[common], help="List the tools registered for the active mode")
    return parser


def _run(args: argparse.Namespace) -> int:
    overrides = {"pro_mode": True} if args.pro else {}
    config = load_config(config_file_path=args.config, **overrides)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.transport:
        config.server.transport = args.transport
    if args.log_level:
        config.logging.level = args.log_level.upper()
    configure_logging()

    from webgate_mcp_server.core.server import Gateway

    logger.info(f"Starting Webgate MCP Server v{__version__}", emoji_key="start")
    logger.info(f"Transport: {config.server.transport}", emoji_key="server")
    if config.server.transport != "stdio":
        logger.info(f"Listening on {config.server.host}:{config.server.port}", emoji_key="server")

    Gateway(config).run(config.server.transport)
    return 0


def _list_tools(args: argparse.Namespace) -> int:
    overrides = {"pro_mode": True} if args.pro else {}
    config = load_config(config_file_path=args.config, require_token=False, **overrides)
    configure_logging()

    from webgate_mcp_server.tools import select_tools

    mode = ToolMode.PRO if config.pro_mode else ToolMode.BASE
    registration = config.tool_registration
    descriptors = select_tools(mode, registration.included_tools, registration.excluded_tools)

    table = Table(title=f"Webgate tools ({mode.value} mode)")
    table.add_column("Tool", style="cyan", no_wrap=True)
    table.add_column("Description")
    for descriptor in descriptors:
        table.add_row(descriptor.name, descriptor.summary)
    Console().print(table)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else list(argv)
    args = parser.parse_args(argv)
    if args.command is None:
        # Bare ``webgate`` runs the server
        args = parser.parse_args([*argv, "run"])
    command = args.command

    try:
        if command == "tools":
            return _list_tools(args)
        return _run(args)
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted", emoji_key="server")
        return 130


if __name__ == "__main__":
    sys.exit(main())
