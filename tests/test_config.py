"""Tests for sourcemapt.config: TOML loading, merging, CLI integration, secrets."""

import argparse
import tomllib

import pytest

from sourcemapt.config import (
    _UNSET,
    ConfigError,
    apply_config_to_args,
    generate_config,
    global_config_dir,
    load_config,
    resolve_api_key,
    resolve_sourcegraph_token,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_toml(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _make_args(**overrides):
    """Build a namespace mimicking build_parser() with _UNSET sentinels."""
    defaults = {
        "provider": _UNSET,
        "model": _UNSET,
        "api_key": _UNSET,
        "base_url": _UNSET,
        "sourcegraph_url": _UNSET,
        "sourcegraph_token": _UNSET,
        "repo": _UNSET,
        "revision": _UNSET,
        "max_output_tokens": _UNSET,
        "temperature": _UNSET,
        "top_p": _UNSET,
        "max_turns": _UNSET,
        "system_prompt": _UNSET,
        "color": _UNSET,
        "no_color": _UNSET,
        "quiet": _UNSET,
        "transcript": _UNSET,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture
def xdg(tmp_path, monkeypatch):
    """Point the global config directory into tmp_path."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    return tmp_path / "xdg" / "sourcemapt"


# ===========================================================================
# Config loading
# ===========================================================================


class TestLoadConfig:
    def test_missing_files_returns_empty(self, tmp_path, xdg):
        assert load_config(tmp_path / "project") == {}

    def test_global_only(self, tmp_path, xdg):
        _write_toml(xdg / "config.toml", 'model = "gpt-4o"\nmax_turns = 10\n')
        assert load_config(tmp_path) == {"model": "gpt-4o", "max_turns": 10}

    def test_project_only(self, tmp_path, xdg):
        _write_toml(tmp_path / "sourcemapt.toml", 'repo = "github.com/example/kiwi"\n')
        assert load_config(tmp_path) == {"repo": "github.com/example/kiwi"}

    def test_project_overrides_global(self, tmp_path, xdg):
        _write_toml(xdg / "config.toml", 'model = "global"\nrevision = "v1"\n')
        _write_toml(tmp_path / "sourcemapt.toml", 'model = "project"\n')
        config = load_config(tmp_path)
        assert config["model"] == "project"
        assert config["revision"] == "v1"

    def test_unknown_keys_warn(self, tmp_path, xdg, capsys):
        _write_toml(tmp_path / "sourcemapt.toml", 'bogus = 1\nmodel = "m"\n')
        config = load_config(tmp_path)
        assert config == {"model": "m"}
        assert "unknown config key 'bogus'" in capsys.readouterr().err

    def test_invalid_toml_raises(self, tmp_path, xdg):
        _write_toml(tmp_path / "sourcemapt.toml", "model = \n")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(tmp_path)

    def test_unknown_provider_raises(self, tmp_path, xdg):
        _write_toml(tmp_path / "sourcemapt.toml", 'provider = "bedrock"\n')
        with pytest.raises(ConfigError, match="unknown provider 'bedrock'"):
            load_config(tmp_path)

    def test_xdg_config_home(self, xdg):
        assert global_config_dir() == xdg

    def test_default_global_dir(self, tmp_path, monkeypatch):
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert global_config_dir() == tmp_path / ".config" / "sourcemapt"


class TestTypeValidation:
    def test_string_where_int_expected(self, tmp_path, xdg):
        _write_toml(tmp_path / "sourcemapt.toml", 'max_turns = "ten"\n')
        with pytest.raises(ConfigError, match="'max_turns' expected int, got str"):
            load_config(tmp_path)

    def test_toml_int_for_float_field(self, tmp_path, xdg):
        _write_toml(tmp_path / "sourcemapt.toml", "top_p = 1\n")
        assert load_config(tmp_path) == {"top_p": 1}

    def test_bool_for_int_field_raises(self, tmp_path, xdg):
        _write_toml(tmp_path / "sourcemapt.toml", "max_output_tokens = true\n")
        with pytest.raises(ConfigError, match="got bool"):
            load_config(tmp_path)

    def test_bool_for_float_field_raises(self, tmp_path, xdg):
        _write_toml(tmp_path / "sourcemapt.toml", "temperature = false\n")
        with pytest.raises(ConfigError, match="int or float, got bool"):
            load_config(tmp_path)

    def test_bool_field(self, tmp_path, xdg):
        _write_toml(tmp_path / "sourcemapt.toml", "transcript = true\n")
        assert load_config(tmp_path) == {"transcript": True}


class TestSecretsInGit:
    def test_warns_for_token_in_repo(self, tmp_path, xdg, capsys):
        (tmp_path / ".git").mkdir()
        _write_toml(tmp_path / "sourcemapt.toml", 'sourcegraph_token = "sgp_x"\n')
        load_config(tmp_path)
        assert "'sourcegraph_token'" in capsys.readouterr().err

    def test_no_warning_without_secrets(self, tmp_path, xdg, capsys):
        (tmp_path / ".git").mkdir()
        _write_toml(tmp_path / "sourcemapt.toml", 'model = "m"\n')
        load_config(tmp_path)
        assert capsys.readouterr().err == ""


class TestGenerateConfig:
    def test_template_is_valid_toml(self):
        assert tomllib.loads(generate_config()) == {}

    def test_project_flag(self):
        assert "<project>/sourcemapt.toml" in generate_config(project=True)
        assert "~/.config/sourcemapt/config.toml" in generate_config()

    def test_uncommented_template_validates(self, tmp_path, xdg):
        lines = []
        for line in generate_config().splitlines():
            if line.startswith("# ") and " = " in line:
                lines.append(line[2:])
        _write_toml(tmp_path / "sourcemapt.toml", "\n".join(lines) + "\n")
        config = load_config(tmp_path)
        assert config["provider"] == "openai"
        assert config["max_turns"] == 30


# ===========================================================================
# CLI integration
# ===========================================================================


class TestApplyConfigToArgs:
    def test_config_fills_unset(self):
        args = _make_args()
        apply_config_to_args(args, {"max_turns": 42, "provider": "openrouter"})
        assert args.max_turns == 42
        assert args.provider == "openrouter"

    def test_cli_beats_config(self):
        args = _make_args(max_turns=5)
        apply_config_to_args(args, {"max_turns": 42})
        assert args.max_turns == 5

    def test_sentinel_resolves_to_default(self):
        args = _make_args()
        apply_config_to_args(args, {})
        assert args.provider == "openai"
        assert args.model == "gpt-4"
        assert args.repo == "github.com/kubernetes/kubernetes"
        assert args.revision == "master"
        assert args.top_p == 0.1
        assert args.max_output_tokens == 512
        assert args.max_turns == 30
        assert args.temperature is None
        assert args.quiet is False
        assert args.transcript is False

    def test_store_true_absent_plus_config_true(self):
        args = _make_args()
        apply_config_to_args(args, {"quiet": True})
        assert args.quiet is True

    def test_store_true_flag_present_beats_config(self):
        args = _make_args(transcript=True)
        apply_config_to_args(args, {"transcript": False})
        assert args.transcript is True

    def test_color_config_true(self):
        args = _make_args()
        apply_config_to_args(args, {"color": True})
        assert args.color is True
        assert args.no_color is False

    def test_color_config_false(self):
        args = _make_args()
        apply_config_to_args(args, {"color": False})
        assert args.color is False
        assert args.no_color is True

    def test_color_cli_overrides_config(self):
        args = _make_args(color=True)
        apply_config_to_args(args, {"color": False})
        assert args.color is True  # CLI wins


# ===========================================================================
# Secrets
# ===========================================================================


class TestResolveApiKey:
    def test_explicit_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert resolve_api_key("openai", "sk-explicit") == "sk-explicit"

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "or-env")
        assert resolve_api_key("openrouter", None) == "or-env"

    def test_missing_key_raises(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
            resolve_api_key("openai", None)

    def test_lmstudio_needs_no_key(self, monkeypatch):
        assert resolve_api_key("lmstudio", None) is None


class TestResolveSourcegraphToken:
    def test_explicit(self, monkeypatch):
        monkeypatch.setenv("SOURCEGRAPH_API_TOKEN", "env")
        assert resolve_sourcegraph_token("cli") == "cli"

    def test_env(self, monkeypatch):
        monkeypatch.setenv("SOURCEGRAPH_API_TOKEN", "env")
        assert resolve_sourcegraph_token(None) == "env"

    def test_anonymous(self, monkeypatch):
        monkeypatch.delenv("SOURCEGRAPH_API_TOKEN", raising=False)
        assert resolve_sourcegraph_token(None) is None
