"""Environment-driven configuration."""
import os

import pytest

from aster.config import Config, get_config, reset_config


class TestConfig:

    def test_defaults(self):
        config = Config()
        assert config.cache_dir is None
        assert config.trash_dir == '.aster_trash'
        assert config.ignore_patterns == []
        assert config.stale_policy == 'warn'
        assert config.workers is None
        assert config.protected_types == ['id']

    def test_ignore_patterns_are_comma_separated(self, monkeypatch):
        monkeypatch.setenv('ASTER_IGNORE', 'emoji, f1gender,,m2gender ')
        assert Config().ignore_patterns == ['emoji', 'f1gender', 'm2gender']

    def test_env_file(self, tmp_path):
        env_file = tmp_path / '.env'
        env_file.write_text('ASTER_WORKERS=3\nASTER_STALE_POLICY=rebuild\n')
        try:
            config = Config(env_file)
            assert config.workers == 3
            assert config.stale_policy == 'rebuild'
        finally:
            # load_dotenv writes straight into os.environ
            os.environ.pop('ASTER_WORKERS', None)
            os.environ.pop('ASTER_STALE_POLICY', None)

    def test_invalid_stale_policy(self, monkeypatch):
        monkeypatch.setenv('ASTER_STALE_POLICY', 'sometimes')
        with pytest.raises(ValueError, match='ASTER_STALE_POLICY'):
            Config()

    def test_invalid_workers(self, monkeypatch):
        monkeypatch.setenv('ASTER_WORKERS', '0')
        with pytest.raises(ValueError, match='ASTER_WORKERS'):
            Config()

    def test_singleton(self):
        assert get_config() is get_config()
        first = get_config()
        reset_config()
        assert get_config() is not first
