"""
books_kernel.config -- single public entrypoint for kernel configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain settings.  It
    reads the packaged ``defaults.yaml``, overlays an optional site file, and
    finally applies environment overrides:

        BOOKS_KERNEL_CONFIG   path of a YAML file overlaid on the defaults
        BOOKS_DATABASE_URL    database_url
        BOOKS_LOG_LEVEL       log_level

Failure modes:
    - FileNotFoundError for an explicit path (argument or env) that does
      not exist.
    - yaml.YAMLError for malformed YAML.
    - ValueError for a non-numeric tolerance or an unknown account type.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from books_kernel.logging_config import get_logger
from books_kernel.utils.hashing import hash_payload

logger = get_logger("config")

_DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_ACCOUNT_TYPES = frozenset(
    {"asset", "liability", "equity", "revenue", "expense", "cost_of_goods_sold"}
)


@dataclass(frozen=True)
class AccountRule:
    """Rule for recognising an account by type, name and code."""

    account_type: str
    name_keywords: tuple[str, ...] = ()
    code_prefixes: tuple[str, ...] = ()
    exclude_keywords: tuple[str, ...] = ()

    def matches(self, account_type: str, account_name: str, account_code: str) -> bool:
        if str(getattr(account_type, "value", account_type)) != self.account_type:
            return False
        name = (account_name or "").lower()
        if any(k.lower() in name for k in self.exclude_keywords):
            return False
        if not self.name_keywords and not self.code_prefixes:
            return True
        code = account_code or ""
        return any(k.lower() in name for k in self.name_keywords) or any(
            code.startswith(p) for p in self.code_prefixes
        )


@dataclass(frozen=True)
class KernelConfig:
    database_url: str
    log_level: str = "INFO"
    balance_tolerance: Decimal = Decimal("0.01")
    money_places: int = 2
    posted_by: str = "system"
    account_rules: dict[str, AccountRule] = field(default_factory=dict)
    checksum: str = ""

    def rule(self, name: str) -> AccountRule | None:
        return self.account_rules.get(name)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_account_rule(name: str, raw: dict[str, Any]) -> AccountRule:
    account_type = raw["account_type"]
    if account_type not in _ACCOUNT_TYPES:
        raise ValueError(f"account_rules.{name}: unknown account_type {account_type!r}")
    return AccountRule(
        account_type=account_type,
        name_keywords=tuple(raw.get("name_keywords") or ()),
        code_prefixes=tuple(str(p) for p in raw.get("code_prefixes") or ()),
        exclude_keywords=tuple(raw.get("exclude_keywords") or ()),
    )


def build_config(raw: dict[str, Any]) -> KernelConfig:
    """Turn a merged YAML mapping into a KernelConfig."""
    try:
        tolerance = Decimal(str(raw.get("balance_tolerance", "0.01")))
    except ArithmeticError as exc:
        raise ValueError(
            f"balance_tolerance is not a number: {raw.get('balance_tolerance')!r}"
        ) from exc

    rules = {
        name: parse_account_rule(name, rule)
        for name, rule in (raw.get("account_rules") or {}).items()
    }

    return KernelConfig(
        database_url=str(raw["database_url"]),
        log_level=str(raw.get("log_level", "INFO")).upper(),
        balance_tolerance=tolerance,
        money_places=int(raw.get("money_places", 2)),
        posted_by=str(raw.get("posted_by", "system")),
        account_rules=rules,
        checksum=hash_payload(raw),
    )


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_active_config(path: Path | str | None = None) -> KernelConfig:
    """The single configuration entrypoint.

    Args:
        path: Site YAML file overlaid on the packaged defaults.  Falls back
            to $BOOKS_KERNEL_CONFIG when omitted.

    Returns:
        A frozen KernelConfig.  Every call re-reads the files; callers hold
        the returned object for as long as they need it.
    """
    raw = load_yaml_file(_DEFAULTS_PATH)

    site_path = path or os.environ.get("BOOKS_KERNEL_CONFIG")
    if site_path:
        raw = _merge(raw, load_yaml_file(Path(site_path)))

    if os.environ.get("BOOKS_DATABASE_URL"):
        raw["database_url"] = os.environ["BOOKS_DATABASE_URL"]
    if os.environ.get("BOOKS_LOG_LEVEL"):
        raw["log_level"] = os.environ["BOOKS_LOG_LEVEL"]

    config = build_config(raw)

    logger.info(
        "BOOKS_CONFIG_TRACE",
        extra={
            "config_source": str(site_path) if site_path else "defaults",
            "checksum": config.checksum,
            "balance_tolerance": config.balance_tolerance,
            "account_rule_count": len(config.account_rules),
        },
    )
    return config
