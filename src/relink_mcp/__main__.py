"""ReLink MCP Server entry point."""

import asyncio
import sys


def _check(urls: list[str]) -> None:
    """Run one batch over *urls* and print the results as JSON.

    Usage:
        relink-mcp check https://example.com/old/page.html [URL ...]
    """
    from relink_mcp.server import _do_check

    if not urls:
        print("Usage: relink-mcp check URL [URL ...]", file=sys.stderr)
        sys.exit(2)
    print(asyncio.run(_do_check(urls)))


def _cli() -> None:
    """CLI dispatcher: server (default) or check subcommand."""
    if len(sys.argv) >= 2 and sys.argv[1] == "check":
        _check(sys.argv[2:])
    else:
        from relink_mcp.server import main

        main()


if __name__ == "__main__":
    _cli()
