"""Tests for the command-line interface."""

from dataclasses import replace
from unittest.mock import patch

import pytest

from headersync.common.config import DEFAULT_SEEDS, SyncConfig
from headersync.common.types import Chunk
from headersync.main import (
    EXIT_FAILED,
    EXIT_OK,
    EXIT_SUSPECT,
    build_parser,
    config_from_args,
    main,
    run_sync,
)
from headersync.sync.header_store import HeaderStore

from tests.fixtures.headers import make_client, make_headers, make_source


class TestParser:
    def test_sync_defaults(self):
        args = build_parser().parse_args(["sync"])
        config = config_from_args(args)
        assert config.seeds == DEFAULT_SEEDS
        assert config.from_height == 1000
        assert config.to_height == 2000
        assert config.step == 0
        assert config.parallel is False
        assert config.port == 3000
        assert config.checkpoint_count == 2
        assert config.trusted_checkpoints == []
        assert config.export_path is None

    def test_sync_short_options(self):
        args = build_parser().parse_args(
            ["sync", "1.1.1.1", "2.2.2.2", "-p", "-f", "10", "-t", "50", "-s", "24"]
        )
        config = config_from_args(args)
        assert config.seeds == ["1.1.1.1", "2.2.2.2"]
        assert config.parallel is True
        assert (config.from_height, config.to_height, config.step) == (10, 50, 24)

    def test_sync_long_options(self):
        args = build_parser().parse_args([
            "--log-level", "DEBUG", "sync",
            "--parallel", "--from", "5", "--to", "9", "--step", "2",
            "--checkpoint", "aa" * 32, "--checkpoint", "bb" * 32,
            "--checkpoints", "4", "--export", "out.json", "--timeout", "3.5", "--retries", "0",
        ])
        config = config_from_args(args)
        assert args.log_level == "DEBUG"
        assert config.trusted_checkpoints == ["aa" * 32, "bb" * 32]
        assert config.checkpoint_count == 4
        assert config.export_path == "out.json"
        assert config.request_timeout == 3.5
        assert config.retries == 0

    def test_serve_arguments(self):
        args = build_parser().parse_args(["serve", "headers.json", "--port", "3100"])
        assert args.command == "serve"
        assert args.path == "headers.json"
        assert args.port == 3100
        assert args.host == "127.0.0.1"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRunSync:
    @pytest.mark.asyncio
    async def test_success_exit_code(self, source):
        servers = {"10.0.0.1": source}
        config = SyncConfig(seeds=list(servers), from_height=1000, to_height=1024, step=24)
        async with make_client(servers) as client:
            assert await run_sync(config, client) == EXIT_OK

    @pytest.mark.asyncio
    async def test_fetch_failure_exit_code(self, headers):
        servers = {"10.0.0.1": make_source(headers[:1010])}
        config = SyncConfig(seeds=list(servers), from_height=1000, to_height=1024)
        async with make_client(servers) as client:
            assert await run_sync(config, client) == EXIT_FAILED

    @pytest.mark.asyncio
    async def test_invalid_range_exit_code(self, source):
        config = SyncConfig(seeds=["10.0.0.1"], from_height=10, to_height=5)
        assert await run_sync(config) == EXIT_FAILED

    @pytest.mark.asyncio
    async def test_suspect_exit_code(self, source, headers):
        servers = {"10.0.0.1": source}
        stranger = make_headers(1, start_height=5000, salt="stranger")[0]
        config = SyncConfig(
            seeds=list(servers), from_height=1000, to_height=1010,
            trusted_checkpoints=[stranger.hash],
        )
        async with make_client(servers) as client:
            assert await run_sync(config, client) == EXIT_SUSPECT

    @pytest.mark.asyncio
    async def test_unwritable_export_exit_code(self, source, tmp_path):
        servers = {"10.0.0.1": source}
        config = SyncConfig(
            seeds=list(servers), from_height=1000, to_height=1010,
            export_path=str(tmp_path / "nodir" / "x.json"),
        )
        async with make_client(servers) as client:
            assert await run_sync(config, client) == EXIT_FAILED

    @pytest.mark.asyncio
    async def test_malformed_root_exit_code(self, headers):
        served = list(headers)
        served[1000] = replace(headers[1000], bits="zzzz")
        servers = {"10.0.0.1": make_source(served)}
        config = SyncConfig(seeds=list(servers), from_height=1000, to_height=1010)
        async with make_client(servers) as client:
            assert await run_sync(config, client) == EXIT_FAILED


class TestMain:
    def test_serve_missing_file(self, tmp_path):
        assert main(["serve", str(tmp_path / "missing.json")]) == EXIT_FAILED

    def test_sync_invalid_range(self):
        assert main(["sync", "-f", "100", "-t", "50"]) == EXIT_FAILED

    def test_serve_loads_export(self, headers, tmp_path):
        path = tmp_path / "headers.json"
        HeaderStore.from_chunks([Chunk(1001, 1011, headers[1001:1011])]).export_json(path)

        with patch("uvicorn.run") as run:
            assert main(["serve", str(path), "--port", "3100"]) == EXIT_OK

        run.assert_called_once()
        assert run.call_args.kwargs["host"] == "127.0.0.1"
        assert run.call_args.kwargs["port"] == 3100

    def test_serve_rejects_bad_export(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text('{"version": 99, "headers": []}')
        with patch("uvicorn.run") as run:
            assert main(["serve", str(path)]) == EXIT_FAILED
        run.assert_not_called()
