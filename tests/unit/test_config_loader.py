"""Configuration loading tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from veilflow.config.loader import load_app_config
from veilflow.schemas.enums import ClusterMode, SplitFallback


def _write_config(tmp_path: Path, content: str) -> Path:
    config_path = tmp_path / "settings.yaml"
    config_path.write_text(content, encoding="utf-8")
    return config_path


_BASE_CONFIG = """
schema_version: "1.0.0"
cluster: "localnet"
mint:
  address: "MintAddress1111111111111111111111111111111"
  decimals: 6
flow:
  amount: "1"
""".strip()


def test_defaults_fill_missing_sections(tmp_path: Path) -> None:
    """Unspecified sections fall back to model defaults."""
    config = load_app_config(_write_config(tmp_path, _BASE_CONFIG), env={})
    assert config.cluster == ClusterMode.LOCALNET
    assert config.funding.lamports_per_wallet == 200_000_000
    assert config.funding_wait.max_attempts == 15
    assert config.flow.split_fallback == SplitFallback.FULL_AMOUNT
    assert config.flow.steps["authorization"] is False
    assert config.flow.steps["deposit"] is True


def test_cli_overrides_env_and_yaml_defaults(tmp_path: Path) -> None:
    """CLI override should have highest precedence."""
    config = load_app_config(
        _write_config(tmp_path, _BASE_CONFIG),
        env={"VEILFLOW_CLUSTER": "devnet"},
        cli_overrides={"cluster": "mainnet-beta", "amount": "2.5", "fund_amount": "0.1"},
    )
    assert config.cluster == ClusterMode.MAINNET
    assert config.flow.amount == "2.5"
    assert config.funding.fund_amount == "0.1"


def test_env_overrides_mint_and_state_dir(tmp_path: Path) -> None:
    """Environment values replace YAML mint settings."""
    config = load_app_config(
        _write_config(tmp_path, _BASE_CONFIG),
        env={
            "VEILFLOW_CLUSTER": "localhost",
            "VEILFLOW_MINT": "OtherMint",
            "VEILFLOW_MINT_DECIMALS": "9",
            "VEILFLOW_STATE_DIR": str(tmp_path / "state"),
        },
    )
    assert config.cluster == ClusterMode.LOCALNET
    assert config.mint.address == "OtherMint"
    assert config.mint.decimals == 9
    assert config.state_dir == tmp_path / "state"


def test_step_toggles_merge_with_defaults(tmp_path: Path) -> None:
    """Partial toggle maps keep defaults for the rest."""
    config = load_app_config(
        _write_config(tmp_path, _BASE_CONFIG + "\n  steps:\n    authorization: true\n"),
        env={},
    )
    assert config.flow.steps["authorization"] is True
    assert config.flow.steps["withdraw"] is True


@pytest.mark.parametrize(
    "extra",
    [
        "\n  steps:\n    teleport: true\n",
        "\n  spend_order: [\"withdraw\", \"withdraw\"]\n",
        "\n  split_fallback: \"round_up\"\n",
    ],
)
def test_invalid_flow_section_is_rejected(tmp_path: Path, extra: str) -> None:
    """Unknown toggles, bad spend orders and unknown fallbacks fail validation."""
    with pytest.raises(ValueError):
        load_app_config(_write_config(tmp_path, _BASE_CONFIG + extra), env={})


def test_unknown_cluster_and_backend_are_rejected(tmp_path: Path) -> None:
    """Only known clusters and the sandbox backend are accepted."""
    config_path = _write_config(tmp_path, _BASE_CONFIG)
    with pytest.raises(ValueError):
        load_app_config(config_path, env={"VEILFLOW_CLUSTER": "testnet-x"})
    with pytest.raises(ValueError):
        load_app_config(
            _write_config(tmp_path, _BASE_CONFIG + '\nbackend: "rpc"\n'),
            env={},
        )


def test_unknown_top_level_keys_are_forbidden(tmp_path: Path) -> None:
    """Strict models reject typos in the YAML file."""
    with pytest.raises(ValueError):
        load_app_config(_write_config(tmp_path, _BASE_CONFIG + "\nclustr: devnet\n"), env={})


def test_missing_config_file_raises(tmp_path: Path) -> None:
    """A missing config path is reported clearly."""
    with pytest.raises(FileNotFoundError):
        load_app_config(tmp_path / "absent.yaml", env={})
