"""
Settings Loader (``practice_config.loader``).

Responsibility
--------------
Loads a YAML settings document and parses it into the frozen
``PracticeSettings`` dataclass.  Keys that are absent keep their
dataclass defaults; unknown keys are rejected.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or out-of-range value  -> ``ValueError``.
* Schedule values (month, weekday)  -> ``InvalidScheduleError``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from practice_kernel.domain.types import NumberingScheme
from practice_kernel.logging_config import get_logger
from practice_config.schema import PracticeSettings, ReceiptNumbering

logger = get_logger("config.loader")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return data


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown {section} key(s): {', '.join(sorted(unknown))}")


def parse_settings(data: dict[str, Any]) -> PracticeSettings:
    """Build PracticeSettings from a parsed YAML mapping."""
    top_level = {f.name for f in fields(PracticeSettings)}
    _check_keys("settings", data, top_level)

    kwargs = dict(data)

    invoice = kwargs.pop("invoice_numbering", None)
    if invoice is not None:
        _check_keys("invoice_numbering", invoice, {f.name for f in fields(NumberingScheme)})
        kwargs["invoice_numbering"] = NumberingScheme(**invoice)

    receipt = kwargs.pop("receipt_numbering", None)
    if receipt is not None:
        _check_keys("receipt_numbering", receipt, {f.name for f in fields(ReceiptNumbering)})
        kwargs["receipt_numbering"] = ReceiptNumbering(**receipt)

    return PracticeSettings(**kwargs)


def load_settings(path: Path | str | None = None) -> PracticeSettings:
    """
    Load settings from ``path``, or from the packaged defaults.yaml.

    Postconditions:
        Returns a validated, frozen PracticeSettings.
    """
    source = Path(path) if path is not None else DEFAULTS_PATH
    settings = parse_settings(load_yaml_file(source))
    logger.info(
        "settings_loaded",
        extra={
            "source": str(source),
            "fiscal_year_start_month": settings.fiscal_year_start_month,
            "invoice_prefix": settings.invoice_numbering.prefix,
        },
    )
    return settings
