"""Tests for Gateway construction and the command-line entry point."""
import pytest

from webgate_mcp_server.cli.main import build_parser, main
from webgate_mcp_server.config import GatewayConfig
from webgate_mcp_server.constants import ToolMode
from webgate_mcp_server.core.server import Gateway


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    for name in ("API_TOKEN", "PRO_MODE", "RATE_LIMIT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)


class TestGateway:
    @pytest.mark.asyncio
    async def test_base_mode_registration(self, isolated_env, connector):
        gateway = Gateway(GatewayConfig(api_token="t", rate_limit="5/1m"), connector=connector)

        assert gateway.mode == ToolMode.BASE
        assert set(gateway.registered_tools) == {"search_engine", "scrape_as_markdown", "session_stats"}
        assert gateway.dispatcher.rate_gate.spec.limit == 5
        assert {tool.name for tool in await gateway.mcp.list_tools()} == set(gateway.registered_tools)

    def test_pro_mode_with_exclusions(self, isolated_env, connector):
        config = GatewayConfig(
            api_token="t",
            pro_mode=True,
            tool_registration={"excluded_tools": ["scraping_browser_screenshot"]},
        )
        gateway = Gateway(config, connector=connector)

        assert gateway.mode == ToolMode.PRO
        assert "scraping_browser_navigate" in gateway.registered_tools
        assert "scraping_browser_screenshot" not in gateway.registered_tools

    def test_without_registration(self, isolated_env, connector):
        gateway = Gateway(GatewayConfig(api_token="t"), register_tools=False, connector=connector)
        assert gateway.registered_tools == {}


class TestCli:
    def test_run_options(self):
        args = build_parser().parse_args(["run", "--pro", "--transport", "sse", "--port", "9000"])
        assert args.command == "run"
        assert args.pro is True
        assert args.transport == "sse"
        assert args.port == 9000

    def test_missing_token_exits_with_config_error(self, isolated_env):
        assert main(["run"]) == 2
        assert main([]) == 2

    def test_list_tools(self, isolated_env, capsys):
        assert main(["tools"]) == 0
        output = capsys.readouterr().out
        assert "search_engine" in output
        assert "base mode" in output
