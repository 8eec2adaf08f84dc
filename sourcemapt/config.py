"""Configuration file loading and merging for sourcemapt.

Reads TOML config from ~/.config/sourcemapt/config.toml (global) and
<base_dir>/sourcemapt.toml (project). Precedence: CLI > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .report import ConfigError  # noqa: F401 (re-exported)

_UNSET = object()  # Sentinel for "not set by CLI"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "provider": str,
    "model": str,
    "api_key": str,
    "base_url": str,
    "sourcegraph_url": str,
    "sourcegraph_token": str,
    "repo": str,
    "revision": str,
    "max_output_tokens": int,
    "temperature": (int, float),
    "top_p": (int, float),
    "max_turns": int,
    "system_prompt": str,
    "color": bool,
    "quiet": bool,
    "transcript": bool,
}

PROVIDERS = ("openai", "openrouter", "lmstudio")

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "provider": "openai",
    "model": "gpt-4",
    "api_key": None,
    "base_url": None,
    "sourcegraph_url": "https://sourcegraph.com/.api/graphql",
    "sourcegraph_token": None,
    "repo": "github.com/kubernetes/kubernetes",
    "revision": "master",
    "max_output_tokens": 512,
    "temperature": None,
    "top_p": 0.1,
    "max_turns": 30,
    "system_prompt": None,
    "color": False,
    "no_color": False,
    "quiet": False,
    "transcript": False,
}

# Provider -> environment variable holding its API key
PROVIDER_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

SOURCEGRAPH_TOKEN_ENV = "SOURCEGRAPH_API_TOKEN"


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "sourcemapt"
    return Path.home() / ".config" / "sourcemapt"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types in a parsed config dict.

    Raises ConfigError for type mismatches or an unknown provider.
    Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int; reject it for numeric fields.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

    if "provider" in config and config["provider"] not in PROVIDERS:
        raise ConfigError(
            f"{source}: unknown provider {config['provider']!r} "
            f"(expected one of {', '.join(PROVIDERS)})"
        )


def _check_secrets_in_git(config: dict, config_path: Path) -> None:
    """Warn if a secret is set in a project config inside a git repo."""
    secrets = [k for k in ("api_key", "sourcegraph_token") if k in config]
    if not secrets:
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: {', '.join(repr(s) for s in secrets)} in a "
                f"git-tracked project config may be committed accidentally. "
                f"Consider using an environment variable.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with only the keys actually set in config files
    (no defaults injected).
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    project_path = Path(base_dir).resolve() / "sourcemapt.toml"
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_secrets_in_git(project_config, project_path)

    return {**global_config, **project_config}


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    Remaining _UNSET sentinels are then replaced with hardcoded defaults.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the mutually exclusive color pair.
    if "color" in config:
        if _is_unset("color") and _is_unset("no_color"):
            args.color = config["color"]
            args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def resolve_api_key(provider: str, api_key: str | None) -> str | None:
    """Fall back to the provider's environment variable when no key is set."""
    if api_key or provider not in PROVIDER_KEY_ENV:
        return api_key
    api_key = os.environ.get(PROVIDER_KEY_ENV[provider])
    if not api_key:
        raise ConfigError(
            f"--api-key or {PROVIDER_KEY_ENV[provider]} env var required "
            f"for {provider} provider"
        )
    return api_key


def resolve_sourcegraph_token(token: str | None) -> str | None:
    """Return the Sourcegraph token or SOURCEGRAPH_API_TOKEN; None means anonymous."""
    return token or os.environ.get(SOURCEGRAPH_TOKEN_ENV)


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# sourcemapt configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/sourcemapt.toml' if project else '~/.config/sourcemapt/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Provider / model ---",
        '# provider = "openai"            # "openai" | "openrouter" | "lmstudio"',
        '# model = "gpt-4"',
        '# api_key = "sk-..."              # prefer OPENAI_API_KEY / OPENROUTER_API_KEY',
        '# base_url = "https://..."',
        "",
        "# --- Generation parameters ---",
        "# max_output_tokens = 512",
        "# temperature = 0.2",
        "# top_p = 0.1",
        "",
        "# --- Code search ---",
        '# sourcegraph_url = "https://sourcegraph.com/.api/graphql"',
        '# sourcegraph_token = "sgp_..."   # prefer SOURCEGRAPH_API_TOKEN',
        '# repo = "github.com/kubernetes/kubernetes"',
        '# revision = "master"',
        "",
        "# --- Agent behaviour ---",
        "# max_turns = 30",
        '# system_prompt = "..."',
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "# transcript = false",
        "",
    ]
    return "\n".join(lines)
