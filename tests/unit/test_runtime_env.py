"""Runtime .env loading tests."""

from __future__ import annotations

import os
from pathlib import Path

from veilflow.runtime_env import load_runtime_env, resolve_env_file


def _isolate(monkeypatch, tmp_path: Path, *names: str) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.chdir(tmp_path)
    for name in ("VEILFLOW_DISABLE_DOTENV", "VEILFLOW_ENV_FILE", *names):
        # setenv first so monkeypatch removes whatever the loader exports.
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_dotenv_in_working_directory_sets_cluster_and_mint(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    """A local .env supplies cluster and mint settings for the run command."""
    (tmp_path / ".env").write_text(
        "VEILFLOW_CLUSTER=devnet\nVEILFLOW_MINT=So11111111111111111111111111111111111111112\n",
        encoding="utf-8",
    )
    _isolate(monkeypatch, tmp_path, "VEILFLOW_CLUSTER", "VEILFLOW_MINT")

    assert load_runtime_env() is True
    assert os.environ["VEILFLOW_CLUSTER"] == "devnet"
    assert os.environ["VEILFLOW_MINT"].startswith("So111")


def test_dotenv_is_found_from_a_subdirectory(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    """Running inside a nested state directory still finds the project .env."""
    (tmp_path / ".env").write_text("VEILFLOW_STATE_DIR=.veilflow\n", encoding="utf-8")
    nested = tmp_path / "state" / "wallets"
    nested.mkdir(parents=True)
    _isolate(monkeypatch, nested, "VEILFLOW_STATE_DIR")

    resolved = resolve_env_file()
    assert resolved is not None
    assert resolved.resolve() == (tmp_path / ".env").resolve()
    assert load_runtime_env() is True
    assert os.environ["VEILFLOW_STATE_DIR"] == ".veilflow"


def test_exported_values_beat_dotenv(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    """A cluster exported in the shell is not replaced by the file."""
    (tmp_path / ".env").write_text("VEILFLOW_CLUSTER=devnet\n", encoding="utf-8")
    _isolate(monkeypatch, tmp_path)
    monkeypatch.setenv("VEILFLOW_CLUSTER", "localnet")

    load_runtime_env()

    assert os.environ["VEILFLOW_CLUSTER"] == "localnet"


def test_explicit_env_file_replaces_discovery(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    """VEILFLOW_ENV_FILE selects a per-cluster file over the local .env."""
    (tmp_path / ".env").write_text("VEILFLOW_CLUSTER=localnet\n", encoding="utf-8")
    devnet_env = tmp_path / "devnet.env"
    devnet_env.write_text("VEILFLOW_CLUSTER=devnet\n", encoding="utf-8")
    _isolate(monkeypatch, tmp_path, "VEILFLOW_CLUSTER")
    monkeypatch.setenv("VEILFLOW_ENV_FILE", str(devnet_env))

    assert load_runtime_env() is True
    assert os.environ["VEILFLOW_CLUSTER"] == "devnet"


def test_missing_explicit_env_file_loads_nothing(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    """A mistyped VEILFLOW_ENV_FILE does not fall back to the local .env."""
    (tmp_path / ".env").write_text("VEILFLOW_CLUSTER=mainnet\n", encoding="utf-8")
    _isolate(monkeypatch, tmp_path, "VEILFLOW_CLUSTER")
    monkeypatch.setenv("VEILFLOW_ENV_FILE", str(tmp_path / "nope.env"))

    assert load_runtime_env() is False
    assert "VEILFLOW_CLUSTER" not in os.environ


def test_disable_flag_wins_over_explicit_file(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    """VEILFLOW_DISABLE_DOTENV turns off both discovery and VEILFLOW_ENV_FILE."""
    explicit = tmp_path / "devnet.env"
    explicit.write_text("VEILFLOW_MINT=from-dotenv\n", encoding="utf-8")
    _isolate(monkeypatch, tmp_path, "VEILFLOW_MINT")
    monkeypatch.setenv("VEILFLOW_ENV_FILE", str(explicit))
    monkeypatch.setenv("VEILFLOW_DISABLE_DOTENV", "yes")

    assert resolve_env_file() is None
    assert load_runtime_env() is False
    assert "VEILFLOW_MINT" not in os.environ
