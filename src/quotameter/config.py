import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

APP_DIR = "opencode"


def _dedupe(paths: "list[Path]") -> "list[Path]":
    out: "list[Path]" = []
    for p in paths:
        if p not in out:
            out.append(p)
    return out


def _xdg(env: "Mapping[str, str]", name: "str", fallback: "Path") -> "Path":
    value = env.get(name, "").strip()
    return Path(value) if value else fallback


@dataclass
class RuntimeDirs:
    """
    candidate OpenCode data/config/cache directories, in
    priority order. The first entry follows XDG semantics.
    """

    data_dirs: "list[Path]"
    config_dirs: "list[Path]"
    cache_dirs: "list[Path]"

    @classmethod
    def discover(
        cls,
        env: "Mapping[str, str] | None" = None,
        home: "Path | None" = None,
        platform: "str | None" = None,
    ) -> "RuntimeDirs":
        env = os.environ if env is None else env
        home = Path.home() if home is None else home
        platform = sys.platform if platform is None else platform

        data = [_xdg(env, "XDG_DATA_HOME", home / ".local" / "share") / APP_DIR]
        config = [_xdg(env, "XDG_CONFIG_HOME", home / ".config") / APP_DIR]
        cache = [_xdg(env, "XDG_CACHE_HOME", home / ".cache") / APP_DIR]

        if platform == "win32":
            roaming = _xdg(env, "APPDATA", home / "AppData" / "Roaming")
            local = _xdg(env, "LOCALAPPDATA", home / "AppData" / "Local")
            data += [roaming / APP_DIR, local / APP_DIR]
            config += [roaming / APP_DIR, local / APP_DIR]
            cache.append(local / APP_DIR)
        elif platform == "darwin":
            support = home / "Library" / "Application Support" / APP_DIR
            data += [home / ".local" / "share" / APP_DIR, support]
            config += [home / ".config" / APP_DIR, support]
            cache += [home / ".cache" / APP_DIR, home / "Library" / "Caches" / APP_DIR]
        else:
            data.append(home / ".local" / "share" / APP_DIR)
            config.append(home / ".config" / APP_DIR)
            cache.append(home / ".cache" / APP_DIR)

        return cls(
            data_dirs=_dedupe(data),
            config_dirs=_dedupe(config),
            cache_dirs=_dedupe(cache),
        )

    @property
    def data_dir(self) -> "Path":
        # first existing candidate, else the XDG default
        for p in self.data_dirs:
            if p.is_dir():
                return p
        return self.data_dirs[0]

    @property
    def cache_dir(self) -> "Path":
        return self.cache_dirs[0]


@dataclass
class Config:
    log_level: "str" = "info"
    log_format: "str" = "console"

    runtime_dirs: "RuntimeDirs" = field(default_factory=RuntimeDirs.discover)
    # overrides runtime_dirs.data_dir when set
    data_dir_override: "Path | None" = None
    pricing_path: "Path | None" = None
    pricing_fallbacks_path: "Path | None" = None

    antigravity_client_id: "str" = ""
    antigravity_client_secret: "str" = ""

    concurrency: "int" = 3
    # milliseconds
    skew_ms: "int" = 120_000

    @classmethod
    def from_env(cls, env: "Mapping[str, str] | None" = None) -> "Config":
        env = os.environ if env is None else env

        def path(name: "str") -> "Path | None":
            value = env.get(name, "").strip()
            return Path(value).expanduser() if value else None

        return cls(
            runtime_dirs=RuntimeDirs.discover(env=env),
            data_dir_override=path("QUOTAMETER_DATA_DIR"),
            pricing_path=path("QUOTAMETER_PRICING_PATH"),
            pricing_fallbacks_path=path("QUOTAMETER_PRICING_FALLBACKS_PATH"),
            antigravity_client_id=env.get("ANTIGRAVITY_CLIENT_ID", ""),
            antigravity_client_secret=env.get("ANTIGRAVITY_CLIENT_SECRET", ""),
            concurrency=int(env.get("QUOTAMETER_CONCURRENCY", "3")),
            skew_ms=int(env.get("QUOTAMETER_SKEW_MS", "120000")),
        )

    @property
    def data_dir(self) -> "Path":
        return self.data_dir_override or self.runtime_dirs.data_dir

    @property
    def catalog_path(self) -> "Path":
        return self.pricing_path or (
            self.runtime_dirs.cache_dir / "quotameter" / "models-dev.json"
        )

    @property
    def token_cache_path(self) -> "Path":
        return (
            self.runtime_dirs.cache_dir / "opencode-quota" / "google-access-tokens.json"
        )

    @property
    def accounts_paths(self) -> "list[Path]":
        candidates = self.runtime_dirs.config_dirs + self.runtime_dirs.data_dirs
        return _dedupe([d / "antigravity-accounts.json" for d in candidates])

    @property
    def antigravity_enabled(self) -> "bool":
        return bool(self.antigravity_client_id and self.antigravity_client_secret)
