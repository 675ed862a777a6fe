"""
Configuration file support for the dee2cellscore CLI.

Supports YAML and JSON config files with CLI argument override.

Example build config (YAML):

    species: hsapiens
    curated: hsapiens_colData_transitions_v3.5.csv
    output: out/
    name_prefix: homosapienDEE2Data
    zip: true
    workers: 4
    build:
      raw: false
      agg: false
      deseq2: true
      tsne: true
      rank: true
    tiers:
      qc_pass: true
      qc_warn: true
    counts_cutoff: 10
    design: "~ 1"
"""

import json
from argparse import Namespace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

# Top-level config keys that map directly onto an argument of the same name
SIMPLE_KEYS = (
    'species',
    'curated',
    'output',
    'name_prefix',
    'accessions',
    'accessions_file',
    'metadata',
    'input',
    'counts_cutoff',
    'design',
    'strict_metadata',
    'zip',
    'workers',
    'batch_size',
    'seed',
)

PATH_KEYS = ('curated', 'output', 'accessions_file', 'metadata', 'input')

# Sections whose keys map onto "<prefix><key>" arguments
SECTIONS = {
    'build': ('build_', ('raw', 'agg', 'deseq2', 'tsne', 'rank')),
    'tiers': ('generate_', ('qc_pass', 'qc_warn')),
}

# Short options accepted by the build command
SHORT_TO_LONG = {
    'c': 'config',
    'o': 'output',
    'q': 'quiet',
}


LOADERS_BY_SUFFIX = {
    ".yaml": ("YAML", yaml.safe_load, yaml.YAMLError),
    ".yml": ("YAML", yaml.safe_load, yaml.YAMLError),
    ".json": ("JSON", json.load, json.JSONDecodeError),
}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Read a build configuration file.

    Parameters:
        config_path: .yaml, .yml or .json file

    Returns:
        Top-level mapping (empty for an empty file)

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the suffix is unsupported, the content doesn't parse,
            or the top level is not a mapping

    Examples:
        >>> config = load_config(Path("build.yaml"))
        >>> config["build"]["rank"]
        True
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix not in LOADERS_BY_SUFFIX:
        raise ValueError(
            f"Unsupported config format: {suffix}. Use {', '.join(LOADERS_BY_SUFFIX)}"
        )
    label, parse, parse_error = LOADERS_BY_SUFFIX[suffix]

    with open(config_path) as handle:
        try:
            config = parse(handle)
        except parse_error as e:
            raise ValueError(f"Invalid {label} in config file {config_path}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(
            f"Config file must hold a mapping at top level, got {type(config).__name__}"
        )
    return config


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure.

    Raises:
        ValueError: On unknown keys, non-mapping sections or invalid values
    """
    known = set(SIMPLE_KEYS) | set(SECTIONS)
    unknown = sorted(set(config) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {unknown}. Valid keys: {sorted(known)}")

    for section, (_, keys) in SECTIONS.items():
        if section not in config:
            continue
        values = config[section]
        if not isinstance(values, dict):
            raise ValueError(f"Config section '{section}' must be a mapping")
        bad = sorted(set(values) - set(keys))
        if bad:
            raise ValueError(f"Unknown keys in '{section}': {bad}. Valid keys: {list(keys)}")
        for key, value in values.items():
            if not isinstance(value, bool):
                raise ValueError(f"'{section}.{key}' must be true or false, got {value!r}")

    if 'counts_cutoff' in config:
        cutoff = config['counts_cutoff']
        if isinstance(cutoff, bool) or not isinstance(cutoff, (int, float)) or cutoff < 0:
            raise ValueError(f"counts_cutoff must be a non-negative number, got {cutoff!r}")

    if 'workers' in config:
        workers = config['workers']
        if not isinstance(workers, int) or workers < 1:
            raise ValueError(f"workers must be a positive integer, got {workers!r}")

    if 'accessions' in config and not isinstance(config['accessions'], list):
        raise ValueError("accessions must be a list of run accessions")


def explicit_arg_names(cli_args: Optional[List[str]]) -> set:
    """
    Argument destinations explicitly given on the command line.

    "--counts-cutoff 5" and "--counts-cutoff=5" give "counts_cutoff";
    negated switches ("--no-build-raw") give the switch they negate.
    """
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            name = arg[2:].split('=', 1)[0].replace('-', '_')
            if name.startswith('no_'):
                name = name[3:]
            explicit.add(name)
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in SHORT_TO_LONG:
            explicit.add(SHORT_TO_LONG[arg[1]])
    return explicit


def _merge_value(cli_value: Any, config_value: Any, explicit: bool) -> Any:
    """Explicit CLI value, else config value, else the CLI default."""
    if explicit or config_value is None:
        return cli_value
    return config_value


def merge_config_with_args(config: Dict[str, Any], args: Namespace, cli_args: Optional[List[str]] = None) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values)
                  If None, assumes all args are defaults

    Returns:
        Updated Namespace with merged values

    Examples:
        >>> config = load_config(Path("build.yaml"))
        >>> args = parser.parse_args(["--counts-cutoff", "5"])
        >>> merged = merge_config_with_args(config, args, ["--counts-cutoff", "5"])
        >>> # merged.counts_cutoff from CLI, merged.species from config
    """
    explicit_args = explicit_arg_names(cli_args)
    merged = Namespace(**vars(args))

    for key in SIMPLE_KEYS:
        if key not in config:
            continue
        config_value = config[key]
        if config_value is not None and key in PATH_KEYS:
            config_value = Path(config_value)
        setattr(
            merged,
            key,
            _merge_value(getattr(merged, key, None), config_value, key in explicit_args),
        )

    for section, (prefix, keys) in SECTIONS.items():
        values = config.get(section) or {}
        for key in keys:
            if key not in values:
                continue
            arg_name = f"{prefix}{key}"
            setattr(
                merged,
                arg_name,
                _merge_value(getattr(merged, arg_name, None), values[key], arg_name in explicit_args),
            )

    return merged
