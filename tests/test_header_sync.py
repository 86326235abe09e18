"""Tests for the header sync orchestrator: sequential, parallel and failure runs."""

import json
from dataclasses import replace

import pytest

from headersync.common.config import SyncConfig
from headersync.common.errors import ExportError, FetchError, RangeError
from headersync.common.types import HeightRange, ZERO_HASH
from headersync.rpc.client import DAPIClient
from headersync.rpc.header_api import HeaderIndex, register_header_api
from headersync.rpc.server import RPCServer
from headersync.sync.header_store import HeaderStore
from headersync.sync.header_sync import HeaderSync, SyncPhase, SyncState

from tests.fixtures.headers import RoutingTransport, make_client, make_headers, make_source


def _config(servers, **kwargs):
    return SyncConfig(seeds=list(servers), **kwargs)


class TestSyncState:
    def test_initial_state(self):
        state = SyncState()
        assert state.phase == SyncPhase.IDLE
        assert state.fetched == 0
        assert state.target == 0


class TestSequentialSync:
    @pytest.mark.asyncio
    async def test_single_batch_run(self, source, headers):
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1000, to_height=1024, step=24)
        async with make_client(servers) as client:
            sync = HeaderSync(client, config)
            result = await sync.run()

        assert result.phase == SyncPhase.DONE
        assert sync.fetcher.calls == 1
        assert len(source.calls("getBlockHeaders")) == 1
        assert len(result.chain.get_longest_chain()) == 25
        assert len(result.store) == 24
        assert result.gaps == []
        assert result.checkpoints_valid
        assert result.ok
        assert sync.progress == (24, 24)

    @pytest.mark.asyncio
    async def test_root_resolution(self, source, headers):
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1000, to_height=1010, step=5)
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()

        assert [p["height"] for p in source.calls("getBlockHash")] == [0, 1000]
        assert source.calls("getBlockHeader") == [{"blockHash": headers[1000].hash}]
        root = result.chain.get_longest_chain()[0]
        assert root.height == 1000
        assert root.hash == headers[1000].hash
        assert root.header.prev_hash == ZERO_HASH
        assert root.header.bits == 0x1d00ffff

    @pytest.mark.asyncio
    async def test_fixed_step_with_remainder(self, source, headers):
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1000, to_height=1100, step=30)
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()

        assert [p["limit"] for p in source.calls("getBlockHeaders")] == [30, 30, 30, 10]
        assert result.store.heights() == list(range(1001, 1101))
        assert [e.hash for e in result.chain.get_longest_chain()] == [h.hash for h in headers[1000:1101]]

    @pytest.mark.asyncio
    async def test_auto_step_fetches_whole_range_at_once(self, source):
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1000, to_height=1150, step=0)
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()

        assert source.calls("getBlockHeaders") == [{"offset": 1001, "limit": 150}]
        assert len(result.store) == 150

    @pytest.mark.asyncio
    async def test_empty_range(self, source):
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1000, to_height=1000)
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()

        assert source.calls("getBlockHeaders") == []
        assert len(result.chain.get_longest_chain()) == 1
        assert len(result.store) == 0
        assert result.ok

    @pytest.mark.asyncio
    async def test_sequential_rotates_seeds(self, two_sources, headers):
        config = _config(two_sources, from_height=1000, to_height=1040, step=10)
        async with make_client(two_sources) as client:
            result = await HeaderSync(client, config).run()

        counts = [len(rpc.calls("getBlockHeaders")) for rpc in two_sources.values()]
        assert sum(counts) == 4
        assert all(c > 0 for c in counts)
        assert result.ok


class TestParallelSync:
    @pytest.mark.asyncio
    async def test_partition_across_two_sources(self, two_sources, headers):
        config = _config(two_sources, from_height=1000, to_height=1100, step=0, parallel=True)
        async with make_client(two_sources) as client:
            result = await HeaderSync(client, config).run()

        first = two_sources["10.0.0.1"].calls("getBlockHeaders")
        second = two_sources["10.0.0.2"].calls("getBlockHeaders")
        assert first == [{"offset": 1001, "limit": 50, "excludedIps": ["10.0.0.1"]}]
        assert second == [{"offset": 1051, "limit": 50, "excludedIps": ["10.0.0.2"]}]
        assert len(result.chain.get_longest_chain()) == 101
        assert result.store.heights() == list(range(1001, 1101))
        assert result.ok

    @pytest.mark.asyncio
    async def test_last_source_absorbs_remainder(self, headers):
        servers = {f"10.0.0.{i}": make_source(headers) for i in range(1, 4)}
        config = _config(servers, from_height=1000, to_height=1100, step=0, parallel=True)
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()

        ranges = []
        for rpc in servers.values():
            for p in rpc.calls("getBlockHeaders"):
                ranges.append(HeightRange(p["offset"], p["offset"] + p["limit"]))
        assert sorted(ranges, key=lambda r: r.start) == [
            HeightRange(1001, 1034), HeightRange(1034, 1067),
            HeightRange(1067, 1100), HeightRange(1100, 1101),
        ]
        assert result.gaps == []

    @pytest.mark.asyncio
    async def test_fixed_step_within_each_source(self, two_sources, headers):
        config = _config(two_sources, from_height=1000, to_height=1100, step=24, parallel=True)
        async with make_client(two_sources) as client:
            result = await HeaderSync(client, config).run()

        for rpc in two_sources.values():
            assert [p["limit"] for p in rpc.calls("getBlockHeaders")] == [24, 24, 2]
        assert len(result.chain.get_longest_chain()) == 101
        assert result.chain.orphan_count == 0

    @pytest.mark.asyncio
    async def test_one_failing_source_fails_run(self, headers):
        servers = {
            "10.0.0.1": make_source(headers),
            "10.0.0.2": make_source(headers[:1060]),
        }
        config = _config(servers, from_height=1000, to_height=1100, step=10, parallel=True)
        async with make_client(servers) as client:
            sync = HeaderSync(client, config)
            with pytest.raises(FetchError):
                await sync.run()
        assert sync.state.phase == SyncPhase.FAILED

    @pytest.mark.asyncio
    async def test_unreachable_seed_fails_run(self, headers):
        servers = {"10.0.0.1": make_source(headers)}
        config = SyncConfig(
            seeds=["10.0.0.1", "10.0.0.66"], from_height=1000, to_height=1100, parallel=True,
        )
        async with make_client(servers) as client:
            sync = HeaderSync(client, config)
            with pytest.raises(FetchError):
                await sync.run()
        assert sync.state.phase == SyncPhase.FAILED


class TestSyncFailures:
    @pytest.mark.asyncio
    async def test_inverted_range_rejected_before_io(self, source):
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1100, to_height=1000)
        async with make_client(servers) as client:
            sync = HeaderSync(client, config)
            with pytest.raises(RangeError):
                await sync.run()
        assert list(source.request_log) == []
        assert sync.state.phase == SyncPhase.IDLE

    @pytest.mark.asyncio
    async def test_missing_root_fails(self, headers):
        servers = {"10.0.0.1": make_source(headers[:500])}
        config = _config(servers, from_height=1000, to_height=1010)
        async with make_client(servers) as client:
            sync = HeaderSync(client, config)
            with pytest.raises(FetchError):
                await sync.run()
        assert sync.state.phase == SyncPhase.FAILED
        assert sync.assembler is None

    @pytest.mark.asyncio
    async def test_malformed_root_header_fails(self, headers):
        served = list(headers)
        served[1000] = replace(headers[1000], bits="zzzz")
        servers = {"10.0.0.1": make_source(served)}
        config = _config(servers, from_height=1000, to_height=1010)
        async with make_client(servers) as client:
            sync = HeaderSync(client, config)
            with pytest.raises(FetchError, match="malformed header"):
                await sync.run()
        assert sync.state.phase == SyncPhase.FAILED

    @pytest.mark.asyncio
    async def test_unreachable_genesis_probe_fails(self, source):
        servers = {"10.0.0.1": source}
        client = DAPIClient(["10.0.0.66"], transport=RoutingTransport(servers), retries=0)
        config = SyncConfig(seeds=["10.0.0.66"], from_height=1000, to_height=1010)
        async with client:
            sync = HeaderSync(client, config)
            with pytest.raises(FetchError) as exc_info:
                await sync.run()
        assert exc_info.value.method == "getBlockHash"
        assert sync.state.phase == SyncPhase.FAILED
        assert list(source.request_log) == []

    @pytest.mark.asyncio
    async def test_cannot_run_twice(self, source):
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1000, to_height=1005)
        async with make_client(servers) as client:
            sync = HeaderSync(client, config)
            await sync.run()
            with pytest.raises(RuntimeError):
                await sync.run()


class TestValidationPhase:
    @pytest.mark.asyncio
    async def test_valid_run_records_no_failures(self, source):
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1000, to_height=1020)
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()
        assert result.failures == []

    @pytest.mark.asyncio
    async def test_trusted_checkpoints(self, source, headers):
        servers = {"10.0.0.1": source}
        config = _config(
            servers, from_height=1000, to_height=1050,
            trusted_checkpoints=[headers[1010].hash, headers[1050].hash],
        )
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()
        assert result.trusted_valid is True
        assert result.ok

    @pytest.mark.asyncio
    async def test_conflicting_trusted_checkpoint_flags_run(self, source, headers):
        other = make_headers(5, start_height=1008, prev_hash=headers[1007].hash, salt="other")
        servers = {"10.0.0.1": source}
        config = _config(
            servers, from_height=1000, to_height=1050, trusted_checkpoints=[other[2].hash],
        )
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()
        assert result.phase == SyncPhase.DONE
        assert result.checkpoints_valid
        assert result.trusted_valid is False
        assert not result.ok
        assert len(result.failures) == 1
        assert result.failures[0].missing == {other[2].hash}

    @pytest.mark.asyncio
    async def test_checkpoint_count(self, source):
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1000, to_height=1050, checkpoint_count=5)
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()
        assert len(result.checkpoints) == 5
        longest = {e.hash for e in result.chain.get_longest_chain()}
        assert result.checkpoints <= longest

    @pytest.mark.asyncio
    async def test_export(self, source, headers, tmp_path):
        path = tmp_path / "export.json"
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1000, to_height=1020, export_path=str(path))
        async with make_client(servers) as client:
            await HeaderSync(client, config).run()
        data = json.loads(path.read_text())
        assert [item["height"] for item in data["headers"]] == list(range(1001, 1021))
        assert data["headers"][-1]["header"]["hash"] == headers[1020].hash
        assert data["root"]["height"] == 1000
        assert data["root"]["header"]["hash"] == headers[1000].hash
        assert data["root"]["header"]["previousblockhash"] == headers[999].hash

    @pytest.mark.asyncio
    async def test_unwritable_export_fails_run(self, source, tmp_path):
        path = tmp_path / "missing-dir" / "export.json"
        servers = {"10.0.0.1": source}
        config = _config(servers, from_height=1000, to_height=1020, export_path=str(path))
        async with make_client(servers) as client:
            sync = HeaderSync(client, config)
            with pytest.raises(ExportError):
                await sync.run()
        assert sync.state.phase == SyncPhase.FAILED
        assert not path.exists()


async def _export(source, path):
    servers = {"10.0.0.1": source}
    config = _config(servers, from_height=1000, to_height=1050, export_path=str(path))
    async with make_client(servers) as client:
        await HeaderSync(client, config).run()
    return HeaderStore.load_json(path)


def _republish(store):
    rpc = RPCServer()
    register_header_api(rpc, HeaderIndex.from_store(store))
    return rpc


class TestRepublishedExport:
    @pytest.mark.asyncio
    async def test_resync_from_served_export(self, source, headers, tmp_path):
        store = await _export(source, tmp_path / "export.json")
        assert store.root.height == 1000

        mirror = _republish(store)
        servers = {"10.0.0.9": mirror}
        config = _config(servers, from_height=1000, to_height=1050)
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()

        assert result.ok
        assert [p["height"] for p in mirror.calls("getBlockHash")] == [0, 1000]
        assert [e.hash for e in result.chain.get_longest_chain()] == [h.hash for h in headers[1000:1051]]

    @pytest.mark.asyncio
    async def test_resync_inner_range(self, source, headers, tmp_path):
        store = await _export(source, tmp_path / "export.json")
        servers = {"10.0.0.9": _republish(store)}
        config = _config(servers, from_height=1010, to_height=1040, step=10)
        async with make_client(servers) as client:
            result = await HeaderSync(client, config).run()

        assert result.ok
        assert result.store.heights() == list(range(1011, 1041))

    @pytest.mark.asyncio
    async def test_range_outside_export_fails(self, source, tmp_path):
        store = await _export(source, tmp_path / "export.json")
        servers = {"10.0.0.9": _republish(store)}
        config = _config(servers, from_height=1040, to_height=1060)
        async with make_client(servers) as client:
            sync = HeaderSync(client, config)
            with pytest.raises(FetchError):
                await sync.run()
        assert sync.state.phase == SyncPhase.FAILED
