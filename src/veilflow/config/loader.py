"""Configuration loading and override resolution."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from veilflow.config.models import AppConfig

DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError("Configuration file must deserialize to a mapping")
    return data


def apply_overrides(
    raw_config: dict[str, Any],
    env: Mapping[str, str],
    cli_overrides: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Apply precedence: CLI > env > YAML defaults."""
    merged = dict(raw_config)
    if env.get("VEILFLOW_CLUSTER"):
        merged["cluster"] = env["VEILFLOW_CLUSTER"]
    if env.get("VEILFLOW_OPERATOR_KEYPAIR"):
        merged["operator_keypair_path"] = env["VEILFLOW_OPERATOR_KEYPAIR"]
    if env.get("VEILFLOW_STATE_DIR"):
        merged["state_dir"] = env["VEILFLOW_STATE_DIR"]
    _apply_mint_env_overrides(merged, env)

    if cli_overrides:
        if cli_overrides.get("cluster"):
            merged["cluster"] = cli_overrides["cluster"]
        flow_overrides = {
            key: cli_overrides[key]
            for key in ("amount",)
            if cli_overrides.get(key) is not None
        }
        if flow_overrides:
            merged["flow"] = {**dict(merged.get("flow") or {}), **flow_overrides}
        funding_overrides = {
            key: cli_overrides[key]
            for key in ("fund_amount", "wrap_amount")
            if cli_overrides.get(key) is not None
        }
        if funding_overrides:
            merged["funding"] = {**dict(merged.get("funding") or {}), **funding_overrides}
    return merged


def _apply_mint_env_overrides(
    merged: dict[str, Any],
    env: Mapping[str, str],
) -> None:
    mint = merged.get("mint")
    mint_section = dict(mint) if isinstance(mint, dict) else {}
    if env.get("VEILFLOW_MINT"):
        mint_section["address"] = env["VEILFLOW_MINT"]
    if env.get("VEILFLOW_MINT_DECIMALS"):
        mint_section["decimals"] = int(env["VEILFLOW_MINT_DECIMALS"])
    if mint_section:
        merged["mint"] = mint_section


def load_app_config(
    config_path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Load and validate central application config."""
    active_env = os.environ if env is None else env
    raw = _load_yaml(config_path or DEFAULT_CONFIG_PATH)
    merged = apply_overrides(raw, active_env, cli_overrides)
    return AppConfig.model_validate(merged)
