import pytest

from soltrader.config import Config, load_config

def test_defaults_without_file(monkeypatch):
    monkeypatch.delenv("SOLTRADER_WALLET_KEY", raising=False)
    cfg = load_config(None)
    assert cfg.paper_mode
    assert cfg.quote_decimals == 6
    assert cfg.exits.tp2.target_pct == 22.0
    assert cfg.wallet.private_key == ""

def test_yaml_merge_keeps_nested_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "mode: live\n"
        "guards:\n  max_slippage_bps: 250\n"
        "exits:\n  tp1:\n    target_pct: 15\n"
        "unknown_section:\n  x: 1\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.mode == "live" and not cfg.paper_mode
    assert cfg.guards.max_slippage_bps == 250
    assert cfg.guards.max_route_impact_pct == 3.0
    assert cfg.exits.tp1.target_pct == 15
    assert cfg.exits.tp1.sell_pct == 50.0
    assert cfg.exits.tp2.target_pct == 22.0
    assert not hasattr(cfg, "unknown_section")

def test_env_overrides_secrets(tmp_path, monkeypatch):
    monkeypatch.setenv("SOLTRADER_WALLET_KEY", "secret")
    monkeypatch.setenv("SOLTRADER_RPC_URL", "https://rpc.example")
    monkeypatch.setenv("JUPITER_API_KEY", "jup")
    cfg = load_config(None)
    assert cfg.wallet.private_key == "secret"
    assert cfg.rpc.url == "https://rpc.example"
    assert cfg.jupiter.api_key == "jup"

def test_explicit_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))

def test_instances_do_not_share_state():
    a, b = Config(), Config()
    a.bundle.tip_accounts.append("x")
    assert "x" not in b.bundle.tip_accounts
