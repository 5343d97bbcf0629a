"""
Configuration management and loading.

Loads the regional pricing catalog, estimator settings and batch source
lists. Validation is strict: unknown or missing keys are errors, so a
mistyped price never silently becomes a default.
"""

import json
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from serverless_cost_calculator.core.pricing import (
    MeteredUnit,
    OperationFormula,
    PricingCatalog,
    PricingTable,
)
from serverless_cost_calculator.source.models import OperationKind

DEFAULT_PRICING_PATH = Path(__file__).with_name("pricing.yaml")
MILLION = Decimal("1000000")


@dataclass(frozen=True)
class EstimatorSettings:
    """Tunable parameters of the estimation pipeline."""
    sampling_duration_seconds: float = 60.0
    bucket_seconds: float = 10.0
    min_confidence_window_seconds: float = 30.0
    range_margin: float = 0.5
    burstiness_threshold: float = 0.5
    scan_ratio_threshold: float = 2.0
    full_scans_per_day: float = 1.0
    collector_workers: int = 4

    def __post_init__(self):
        """Validate settings values."""
        if self.sampling_duration_seconds <= 0:
            raise ValueError("sampling_duration_seconds must be > 0")
        if self.bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be > 0")
        if self.min_confidence_window_seconds < 0:
            raise ValueError("min_confidence_window_seconds cannot be negative")
        if not 0 <= self.range_margin <= 1:
            raise ValueError("range_margin must be between 0 and 1")
        if self.burstiness_threshold < 0:
            raise ValueError("burstiness_threshold cannot be negative")
        if self.scan_ratio_threshold < 1:
            raise ValueError("scan_ratio_threshold must be >= 1")
        if self.full_scans_per_day < 0:
            raise ValueError("full_scans_per_day cannot be negative")
        if self.collector_workers < 1:
            raise ValueError("collector_workers must be >= 1")


@dataclass(frozen=True)
class SourceConfig:
    """Connection parameters of one source database."""
    database: str
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""

    def __post_init__(self):
        """Validate connection parameters."""
        if not self.database or not self.database.strip():
            raise ValueError("database is required and cannot be empty")
        if not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535")


def load_pricing_catalog(path: Optional[str] = None) -> PricingCatalog:
    """Load and validate the regional pricing catalog.

    Regions inherit the top-level ``operations`` schedule unless they define
    their own.

    Args:
        path: Path to a YAML pricing file; the bundled catalog when omitted

    Returns:
        Validated PricingCatalog

    Raises:
        FileNotFoundError: If the pricing file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If the catalog is invalid
    """
    raw_config = _read_yaml(Path(path) if path else DEFAULT_PRICING_PATH)

    _check_keys(raw_config, {"version", "operations", "regions"}, {"version", "regions"}, "pricing")

    regions_data = raw_config["regions"]
    if not isinstance(regions_data, dict) or not regions_data:
        raise ValueError("'regions' must be a non-empty dictionary")

    default_operations = None
    if "operations" in raw_config:
        default_operations = _parse_operations(raw_config["operations"], "operations")

    tables = {}
    for region, region_data in regions_data.items():
        tables[str(region)] = _parse_region(str(region), region_data, default_operations)

    return PricingCatalog(version=str(raw_config["version"]), tables=tables)


def load_settings(path: Optional[str] = None) -> EstimatorSettings:
    """Load estimator settings from YAML, or defaults when no path is given.

    Raises:
        FileNotFoundError: If the settings file doesn't exist
        ValueError: If settings are invalid
    """
    if path is None:
        return EstimatorSettings()

    raw_config = _read_yaml(Path(path))
    allowed_keys = {f.name for f in fields(EstimatorSettings)}
    _check_keys(raw_config, allowed_keys, set(), "settings")

    values = {}
    for key, value in raw_config.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'settings.{key}' must be a number")
        values[key] = int(value) if key == "collector_workers" else float(value)
    return EstimatorSettings(**values)


def load_sources(path: str) -> List[SourceConfig]:
    """Load a batch of source databases from a JSON or YAML list.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the format is unknown or an entry is invalid
    """
    source_path = Path(path)
    if not source_path.exists():
        raise FileNotFoundError(f"Batch configuration file not found: {path}")

    suffix = source_path.suffix.lower()
    with open(source_path, 'r', encoding='utf-8') as f:
        if suffix == ".json":
            raw_sources = json.load(f)
        elif suffix in (".yaml", ".yml"):
            raw_sources = yaml.safe_load(f)
        else:
            raise ValueError(
                "Unknown batch configuration file format. Only json and yaml are supported"
            )

    if not isinstance(raw_sources, list) or not raw_sources:
        raise ValueError("Batch configuration must be a non-empty list of sources")

    allowed_keys = {f.name for f in fields(SourceConfig)}
    sources = []
    for i, entry in enumerate(raw_sources):
        _check_keys(entry, allowed_keys, {"database"}, f"sources[{i}]")
        sources.append(SourceConfig(**entry))
    return sources


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {config_path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration file must contain a dictionary")
    return raw_config


def _check_keys(data: Any, allowed: set, required: set, path: str) -> None:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {sorted(unknown_keys)}")
    for key in sorted(required):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")


def _parse_region(
    region: str,
    data: Any,
    default_operations: Optional[Dict[OperationKind, OperationFormula]]
) -> PricingTable:
    path = f"regions.{region}"
    _check_keys(
        data,
        {"ru_price_per_million", "storage_price_per_gb_month", "free_credit",
         "egress_ru_per_kib", "operations"},
        {"ru_price_per_million", "storage_price_per_gb_month"},
        path,
    )

    if "operations" in data:
        operations = _parse_operations(data["operations"], f"{path}.operations")
    elif default_operations is not None:
        operations = default_operations
    else:
        raise ValueError(f"Missing required 'operations' in {path}")

    return PricingTable(
        region=region,
        ru_unit_price=_parse_price(data["ru_price_per_million"], f"{path}.ru_price_per_million") / MILLION,
        storage_price_per_gb_month=_parse_price(
            data["storage_price_per_gb_month"], f"{path}.storage_price_per_gb_month"
        ),
        formulas=operations,
        egress_ru_per_kib=_parse_number(data.get("egress_ru_per_kib", 0), f"{path}.egress_ru_per_kib"),
        free_credit=_parse_price(data.get("free_credit", 0), f"{path}.free_credit"),
    )


def _parse_operations(data: Any, path: str) -> Dict[OperationKind, OperationFormula]:
    if not isinstance(data, dict) or not data:
        raise ValueError(f"'{path}' must be a non-empty dictionary")

    formulas = {}
    for kind_name, formula_data in data.items():
        try:
            kind = OperationKind(str(kind_name).lower())
        except ValueError:
            valid_kinds = [kind.value for kind in OperationKind]
            raise ValueError(f"Unknown operation kind '{kind_name}' in {path}; must be one of: {valid_kinds}")
        formulas[kind] = _parse_formula(formula_data, f"{path}.{kind_name}")
    return formulas


def _parse_formula(data: Any, path: str) -> OperationFormula:
    _check_keys(
        data,
        {"base_ru", "marginal_ru", "unit", "unit_size", "free_units"},
        {"base_ru", "marginal_ru"},
        path,
    )

    unit_str = data.get("unit", MeteredUnit.BYTES.value)
    try:
        unit = MeteredUnit(str(unit_str).lower())
    except ValueError:
        valid_units = [unit.value for unit in MeteredUnit]
        raise ValueError(f"'unit' in {path} must be one of: {valid_units}")

    unit_size = data.get("unit_size", 1)
    if isinstance(unit_size, bool) or not isinstance(unit_size, int) or unit_size <= 0:
        raise ValueError(f"'unit_size' in {path} must be a positive integer")

    return OperationFormula(
        base_ru=_parse_number(data["base_ru"], f"{path}.base_ru"),
        marginal_ru=_parse_number(data["marginal_ru"], f"{path}.marginal_ru"),
        unit=unit,
        unit_size=unit_size,
        free_units=_parse_number(data.get("free_units", 0), f"{path}.free_units"),
    )


def _parse_number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"'{path}' must be a number >= 0")
    return float(value)


def _parse_price(value: Any, path: str) -> Decimal:
    _parse_number(value, path)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{path}' is not a valid price")
