"""Functions for reading and validating configuration files."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Type

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore

from pydantic import BaseModel, ValidationError

from ..exceptions import ConfigError
from .models import ComplianceConfig, ConfigBundle, LedgerConfig


GEOFENCE_ENV = {
    "GEOFENCE_MIN_LAT": "min_lat",
    "GEOFENCE_MAX_LAT": "max_lat",
    "GEOFENCE_MIN_LNG": "min_lng",
    "GEOFENCE_MAX_LNG": "max_lng",
}


class ConfigFiles:
    """Canonical configuration filenames."""

    COMPLIANCE = "compliance.toml"
    LEDGER = "ledger.toml"


def load_config_bundle(
    root: Path, *, environ: Optional[Mapping[str, str]] = None
) -> ConfigBundle:
    """Load all configuration files from *root* directory.

    Geofence bounds may be overridden through ``GEOFENCE_*`` variables in
    *environ* (defaults to ``os.environ``).
    """

    root = Path(root)
    environ = os.environ if environ is None else environ

    compliance_path = root / ConfigFiles.COMPLIANCE
    compliance_data = _read_toml(compliance_path)
    _apply_geofence_env(compliance_path, compliance_data, environ)
    compliance = _validate(compliance_path, compliance_data, ComplianceConfig)

    ledger_path = root / ConfigFiles.LEDGER
    ledger = _validate(ledger_path, _read_toml(ledger_path), LedgerConfig)
    return ConfigBundle(compliance=compliance, ledger=ledger)


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(path, "file not found") from exc
    except (tomllib.TOMLDecodeError, OSError) as exc:
        raise ConfigError(path, f"failed to read TOML: {exc}") from exc


def _apply_geofence_env(
    path: Path, data: Dict[str, Any], environ: Mapping[str, str]
) -> None:
    overrides: Dict[str, float] = {}
    for variable, field in GEOFENCE_ENV.items():
        raw = environ.get(variable)
        if raw is None or raw.strip() == "":
            continue
        try:
            overrides[field] = float(raw)
        except ValueError as exc:
            raise ConfigError(path, f"{variable}: invalid number '{raw}'") from exc
    if overrides:
        geofence = dict(data.get("geofence") or {})
        geofence.update(overrides)
        data["geofence"] = geofence


def _validate(path: Path, data: Dict[str, Any], model: Type[BaseModel]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(path, format_validation_errors(exc)) from exc


def format_validation_errors(error: ValidationError) -> str:
    messages = []
    for err in error.errors(include_context=False):
        loc = _format_location(err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        if loc:
            messages.append(f"{loc}: {msg}")
        else:
            messages.append(msg)
    return "; ".join(messages)


def _format_location(loc: tuple[Any, ...]) -> str:
    if not loc:
        return ""

    parts: list[str] = []
    for entry in loc:
        if isinstance(entry, int):
            if not parts:
                parts.append(f"[{entry}]")
            else:
                parts[-1] = parts[-1] + f"[{entry}]"
        else:
            parts.append(str(entry))
    return ".".join(parts)
