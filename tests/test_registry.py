"""Tests for the endpoint registry (env slot resolution)."""

from __future__ import annotations

from pathlib import Path

import pytest

from rpc_monitor.endpoints.registry import (
    DEFAULT_EXTERNAL_ENDPOINTS,
    EndpointDescriptor,
    EndpointRegistry,
    SlotField,
    apply_api_key,
    derive_ws_url,
    resolve_endpoints,
    resolve_external_endpoints,
    slot_env_key,
)


class TestUrlHelpers:
    def test_derive_ws_url(self) -> None:
        assert derive_ws_url("http://host:9090") == "ws://host:9090"
        assert derive_ws_url("https://rpc.example.com/evm") == "wss://rpc.example.com/evm"
        assert derive_ws_url("ws://already") == "ws://already"

    def test_apply_api_key_appends_path_segment(self) -> None:
        assert apply_api_key("https://rpc.example.com/v2", "abc") == "https://rpc.example.com/v2/abc"
        assert apply_api_key("https://rpc.example.com/", "abc") == "https://rpc.example.com/abc"

    def test_apply_api_key_keeps_query(self) -> None:
        assert apply_api_key("https://rpc.example.com/v2?x=1", "abc") == "https://rpc.example.com/v2/abc?x=1"

    def test_apply_api_key_noop_without_key(self) -> None:
        assert apply_api_key("https://rpc.example.com", None) == "https://rpc.example.com"

    def test_slot_env_key(self) -> None:
        assert slot_env_key("RPC", 3, SlotField.COMPARE_WITH) == "RPC_3_COMPARE_WITH"


class TestPrimarySlots:
    def test_defaults(self) -> None:
        eps = resolve_endpoints({"RPC_1_NAME": "Main", "RPC_1_URL": "http://main:8545"})
        assert len(eps) == 1
        ep = eps[0]
        assert ep.key == "rpc_1"
        assert ep.expected_chain_id == 998
        assert ep.timeout_ms == 10_000
        assert ep.compare_with is None
        assert ep.is_reference is False
        assert ep.system_url is None

    def test_all_fields(self) -> None:
        env = {
            "RPC_2_NAME": "Node",
            "RPC_2_URL": "http://node:8545",
            "RPC_2_CHAIN_ID": "1",
            "RPC_2_TIMEOUT": "2500",
            "RPC_2_COMPARE_WITH": "main",
            "RPC_2_SYSTEM_URL": "http://node:9100/system",
            "RPC_2_KEY": "node",
            "RPC_2_IS_REFERENCE": "TRUE",
        }
        [ep] = resolve_endpoints(env)
        assert ep.key == "node"
        assert ep.expected_chain_id == 1
        assert ep.timeout_ms == 2500
        assert ep.compare_with == "main"
        assert ep.system_url == "http://node:9100/system"
        assert ep.is_reference is True

    def test_incomplete_slots_skipped(self) -> None:
        env = {
            "RPC_1_NAME": "No URL",
            "RPC_2_URL": "http://no-name:8545",
            "RPC_3_NAME": "Complete",
            "RPC_3_URL": "http://ok:8545",
            "RPC_4_NAME": "",
            "RPC_4_URL": "http://blank-name:8545",
        }
        eps = resolve_endpoints(env)
        assert [ep.key for ep in eps] == ["rpc_3"]

    def test_slot_order_preserved(self) -> None:
        env = {
            "RPC_5_NAME": "Five", "RPC_5_URL": "http://five",
            "RPC_1_NAME": "One", "RPC_1_URL": "http://one",
        }
        assert [ep.name for ep in resolve_endpoints(env)] == ["One", "Five"]

    def test_slots_beyond_bound_ignored(self) -> None:
        env = {"RPC_21_NAME": "Too far", "RPC_21_URL": "http://far"}
        assert resolve_endpoints(env) == []
        assert len(resolve_endpoints(env, max_slots=21)) == 1

    def test_bad_numbers_fall_back(self) -> None:
        env = {
            "RPC_1_NAME": "Main", "RPC_1_URL": "http://main",
            "RPC_1_TIMEOUT": "soon", "RPC_1_CHAIN_ID": "0x3e6",
        }
        [ep] = resolve_endpoints(env)
        assert ep.timeout_ms == 10_000
        assert ep.expected_chain_id == 998

    @pytest.mark.parametrize("raw", ["0", "-5"])
    def test_non_positive_timeout_falls_back(self, raw: str) -> None:
        env = {"RPC_1_NAME": "Main", "RPC_1_URL": "http://main", "RPC_1_TIMEOUT": raw, "RPC_1_CHAIN_ID": raw}
        [ep] = resolve_endpoints(env)
        assert ep.timeout_ms == 10_000
        assert ep.expected_chain_id == 998

    def test_api_key_hidden_from_public_url(self) -> None:
        env = {"RPC_1_NAME": "Main", "RPC_1_URL": "https://main.example.com", "RPC_1_API_KEY": "s3cret"}
        [ep] = resolve_endpoints(env)
        assert ep.url == "https://main.example.com/s3cret"
        assert ep.public_url == "https://main.example.com"
        assert "s3cret" not in ep.public_url

    def test_explicit_display_url(self) -> None:
        env = {
            "RPC_1_NAME": "Main", "RPC_1_URL": "https://user:pw@main.example.com",
            "RPC_1_DISPLAY_URL": "https://main.example.com",
        }
        [ep] = resolve_endpoints(env)
        assert ep.public_url == "https://main.example.com"

    def test_duplicate_key_first_wins(self) -> None:
        env = {
            "RPC_1_NAME": "First", "RPC_1_URL": "http://first", "RPC_1_KEY": "dup",
            "RPC_2_NAME": "Second", "RPC_2_URL": "http://second", "RPC_2_KEY": "dup",
        }
        eps = resolve_endpoints(env)
        assert len(eps) == 1
        assert eps[0].name == "First"


class TestExternalSlots:
    def test_fallback_when_empty(self) -> None:
        assert resolve_external_endpoints({}) == list(DEFAULT_EXTERNAL_ENDPOINTS)
        assert len(DEFAULT_EXTERNAL_ENDPOINTS) >= 1

    def test_ws_url_derived(self) -> None:
        env = {"EXTERNAL_RPC_1_NAME": "Ext", "EXTERNAL_RPC_1_URL": "https://ext.example.com/evm"}
        [ext] = resolve_external_endpoints(env)
        assert ext.ws_url == "wss://ext.example.com/evm"
        assert ext.description == "External RPC endpoint 1"
        assert ext.show_in_ui is True

    def test_api_key_applied_to_both_urls(self) -> None:
        env = {
            "EXTERNAL_RPC_1_NAME": "Ext",
            "EXTERNAL_RPC_1_URL": "https://ext.example.com",
            "EXTERNAL_RPC_1_WS_URL": "wss://ws.ext.example.com",
            "EXTERNAL_RPC_1_API_KEY": "k",
        }
        [ext] = resolve_external_endpoints(env)
        assert ext.rpc_url == "https://ext.example.com/k"
        assert ext.ws_url == "wss://ws.ext.example.com/k"
        display = ext.to_display_dict()
        assert display["rpcUrl"] == "https://ext.example.com"
        assert display["wsUrl"] == "wss://ws.ext.example.com"

    def test_show_in_ui_only_false_hides(self) -> None:
        env = {
            "EXTERNAL_RPC_1_NAME": "A", "EXTERNAL_RPC_1_URL": "http://a", "EXTERNAL_RPC_1_SHOW_IN_UI": "false",
            "EXTERNAL_RPC_2_NAME": "B", "EXTERNAL_RPC_2_URL": "http://b", "EXTERNAL_RPC_2_SHOW_IN_UI": "no",
        }
        a, b = resolve_external_endpoints(env)
        assert a.show_in_ui is False
        assert b.show_in_ui is True


class TestEndpointRegistry:
    def test_from_env_mapping(self) -> None:
        reg = EndpointRegistry.from_env({
            "RPC_1_NAME": "Main", "RPC_1_URL": "http://main", "RPC_1_KEY": "main",
            "EXTERNAL_RPC_1_NAME": "Ext", "EXTERNAL_RPC_1_URL": "http://ext",
        })
        assert reg.keys() == ["main"]
        assert "main" in reg
        assert reg.get("missing") is None
        assert [e.name for e in reg.external] == ["Ext"]

    def test_from_env_reads_dotenv_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("RPC_1_NAME=FromFile\nRPC_1_URL=http://file:8545\n")
        monkeypatch.delenv("RPC_1_NAME", raising=False)
        monkeypatch.delenv("RPC_1_URL", raising=False)

        reg = EndpointRegistry.from_env(env_file=env_file)
        assert reg.get("rpc_1") is not None
        assert reg.get("rpc_1").name == "FromFile"

    def test_process_env_overrides_dotenv(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("RPC_1_NAME=FromFile\nRPC_1_URL=http://file:8545\n")
        monkeypatch.setenv("RPC_1_NAME", "FromEnv")

        reg = EndpointRegistry.from_env(env_file=env_file)
        assert reg.get("rpc_1").name == "FromEnv"

    def test_reference_first_flagged_wins(self) -> None:
        reg = EndpointRegistry([
            EndpointDescriptor(key="a", name="A", url="http://a"),
            EndpointDescriptor(key="b", name="B", url="http://b", is_reference=True),
            EndpointDescriptor(key="c", name="C", url="http://c", is_reference=True),
        ])
        assert reg.reference().key == "b"

    def test_no_reference(self) -> None:
        reg = EndpointRegistry([EndpointDescriptor(key="a", name="A", url="http://a")])
        assert reg.reference() is None

    def test_visible_external(self, registry: EndpointRegistry) -> None:
        names = [e.name for e in registry.visible_external]
        assert "Hidden" not in names
        assert len(registry.external) == 3

    def test_descriptors_are_immutable(self) -> None:
        ep = EndpointDescriptor(key="a", name="A", url="http://a")
        with pytest.raises(Exception):
            ep.url = "http://b"  # type: ignore[misc]

    def test_to_dict_includes_raw_urls(self) -> None:
        reg = EndpointRegistry.from_env({
            "RPC_1_NAME": "Main", "RPC_1_URL": "https://main", "RPC_1_API_KEY": "key",
        })
        dump = reg.to_dict()
        assert dump["endpoints"]["rpc_1"]["url"] == "https://main/key"
        assert dump["endpoints"]["rpc_1"]["display_url"] == "https://main"
