"""Allow ``python -m webgate_mcp_server``."""
import sys

from webgate_mcp_server.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
