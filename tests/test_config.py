from pathlib import Path

from quotameter.config import Config, RuntimeDirs


class TestRuntimeDirs:
    def test_linux_defaults(self, tmp_path: "Path") -> "None":
        dirs = RuntimeDirs.discover(env={}, home=tmp_path, platform="linux")
        assert dirs.data_dirs == [tmp_path / ".local" / "share" / "opencode"]
        assert dirs.cache_dir == tmp_path / ".cache" / "opencode"

    def test_xdg_overrides_come_first(self, tmp_path: "Path") -> "None":
        env = {"XDG_DATA_HOME": str(tmp_path / "xdg-data")}
        dirs = RuntimeDirs.discover(env=env, home=tmp_path, platform="linux")
        assert dirs.data_dirs == [
            tmp_path / "xdg-data" / "opencode",
            tmp_path / ".local" / "share" / "opencode",
        ]

    def test_darwin_candidates(self, tmp_path: "Path") -> "None":
        dirs = RuntimeDirs.discover(env={}, home=tmp_path, platform="darwin")
        assert dirs.data_dirs[-1] == (
            tmp_path / "Library" / "Application Support" / "opencode"
        )
        assert len(dirs.data_dirs) == 2

    def test_windows_candidates(self, tmp_path: "Path") -> "None":
        env = {"APPDATA": str(tmp_path / "Roaming")}
        dirs = RuntimeDirs.discover(env=env, home=tmp_path, platform="win32")
        assert tmp_path / "Roaming" / "opencode" in dirs.config_dirs

    def test_data_dir_prefers_existing(self, tmp_path: "Path") -> "None":
        env = {"XDG_DATA_HOME": str(tmp_path / "missing")}
        existing = tmp_path / ".local" / "share" / "opencode"
        existing.mkdir(parents=True)

        dirs = RuntimeDirs.discover(env=env, home=tmp_path, platform="linux")
        assert dirs.data_dir == existing


class TestConfigFromEnv:
    def test_defaults(self) -> "None":
        config = Config.from_env({})
        assert config.antigravity_client_id == ""
        assert config.concurrency == 3
        assert config.skew_ms == 120_000
        assert config.pricing_fallbacks_path is None

    def test_reads_env_vars(self, tmp_path: "Path") -> "None":
        config = Config.from_env(
            {
                "QUOTAMETER_DATA_DIR": str(tmp_path / "data"),
                "QUOTAMETER_PRICING_PATH": str(tmp_path / "models.json"),
                "QUOTAMETER_CONCURRENCY": "5",
                "QUOTAMETER_SKEW_MS": "30000",
                "ANTIGRAVITY_CLIENT_ID": "client-id",
                "ANTIGRAVITY_CLIENT_SECRET": "client-secret",
            }
        )
        assert config.data_dir == tmp_path / "data"
        assert config.catalog_path == tmp_path / "models.json"
        assert config.concurrency == 5
        assert config.skew_ms == 30_000
        assert config.antigravity_enabled is True

    def test_derived_paths(self, tmp_path: "Path") -> "None":
        config = Config.from_env({"XDG_CACHE_HOME": str(tmp_path / "cache")})
        assert config.token_cache_path == (
            tmp_path
            / "cache"
            / "opencode"
            / "opencode-quota"
            / "google-access-tokens.json"
        )
        assert all(p.name == "antigravity-accounts.json" for p in config.accounts_paths)


class TestAntigravityEnabled:
    def test_needs_both_credentials(self) -> "None":
        assert Config(antigravity_client_id="id").antigravity_enabled is False
        assert (
            Config(
                antigravity_client_id="id", antigravity_client_secret="secret"
            ).antigravity_enabled
            is True
        )
