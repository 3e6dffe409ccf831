"""Settings resolution with named profile support."""

import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path

import tomlkit
import typer
from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from revu.providers.base import ProviderConfig

CONFIG_PATH = Path.home() / ".config" / "revu" / "config.toml"


class RevuSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REVU_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider: str = "github"  # github | gitlab | bitbucket | azure | gitea
    base_url: str | None = None  # backend default when unset
    token: SecretStr | None = None
    owner: str | None = None  # "organization/project" for Azure DevOps
    repo: str | None = None

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(
            type=self.provider,
            base_url=self.base_url or "",
            token=self.token or SecretStr(""),
            owner=self.owner or "",
            repo=self.repo or "",
        )


@lru_cache(maxsize=1)
def _load_toml() -> tomlkit.TOMLDocument:
    """Load ~/.config/revu/config.toml, returning empty document if missing."""
    if not CONFIG_PATH.exists():
        return tomlkit.document()
    return tomlkit.load(CONFIG_PATH.open())


def _list_profiles(config: Mapping) -> list[str]:
    # tomlkit Table implements MutableMapping but not dict, so check Mapping
    return [k for k, v in config.items() if isinstance(v, Mapping)]


def get_settings(profile: str | None = None) -> RevuSettings:
    """Resolve the active profile and return a fully populated RevuSettings.

    Precedence (highest to lowest):
    1. profile argument (--profile CLI flag)
    2. REVU_PROFILE env var
    3. default_profile key in ~/.config/revu/config.toml
    4. First profile defined in ~/.config/revu/config.toml
    """
    toml_config = _load_toml()

    active = (
        profile
        or os.environ.get("REVU_PROFILE")
        or toml_config.get("default_profile")
        or ((_profiles := _list_profiles(toml_config)) and _profiles[0] or None)
    )

    profile_defaults: dict = {}
    if active:
        if active in toml_config and isinstance(toml_config[active], Mapping):
            profile_defaults = dict(toml_config[active])
        else:
            profiles = _list_profiles(toml_config)
            typer.echo(f"Profile '{active}' not found in {CONFIG_PATH}. Available: {profiles or '(none)'}")
            raise typer.Exit(1)

    # profile values arrive as init kwargs; REVU_* env vars fill what the profile leaves unset
    settings = RevuSettings(**profile_defaults)

    missing = [name for name in ("token", "owner", "repo") if not getattr(settings, name)]
    if missing:
        names = ", ".join(missing)
        env_names = ", ".join(f"REVU_{name.upper()}" for name in missing)
        typer.echo(
            f"Missing {names}. Set {env_names} or add them to the "
            f"[{active or 'profile'}] section of {CONFIG_PATH}"
        )
        raise typer.Exit(1)

    return settings
