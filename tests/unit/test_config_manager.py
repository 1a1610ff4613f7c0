import pytest
import yaml

from pxc.exceptions import ValidationError
from pxc.MANAGERS.config_manager import ConfigManager, Settings


@pytest.fixture
def dirs(tmp_path):
    base = tmp_path / 'project'
    home = tmp_path / 'home'
    base.mkdir()
    home.mkdir()
    return base, home


def manager(dirs, environ=None):
    base, home = dirs
    return ConfigManager(base_dir=str(base), home_dir=str(home), environ=environ or {})


def test_defaults(dirs):
    settings = manager(dirs).load()
    assert settings == Settings()
    assert settings.storage == 'local-lvm'
    assert settings.tool == 'pct'
    assert settings.ready_attempts == 60
    assert settings.ready_interval == 1.0


def test_layering_order(dirs):
    base, home = dirs
    (home / '.pxc.yaml').write_text(yaml.dump({'storage': 'home-pool'}))
    (base / '.pxc.yaml').write_text(yaml.dump({'storage': 'file-pool', 'node': 'pve1', 'tool': 'pct'}))
    (base / '.env').write_text('PXC_NODE=pve2\nPXC_TOOL=pct-dotenv\nOTHER=1\n')

    settings = manager(dirs, {'PXC_TOOL': 'pct-env'}).load(overrides={'verbose': True, 'dry_run': None})

    assert settings.storage == 'file-pool'
    assert settings.node == 'pve2'
    assert settings.tool == 'pct-env'
    assert settings.verbose is True
    assert settings.dry_run is False


def test_home_file_used_when_project_has_none(dirs):
    _, home = dirs
    (home / '.pxc.yml').write_text(yaml.dump({'proxmox_node': 'pve9'}))
    assert manager(dirs).load().node == 'pve9'


def test_explicit_file(dirs, tmp_path):
    path = tmp_path / 'custom.yaml'
    path.write_text(yaml.dump({'ready_attempts': 5}))
    assert manager(dirs).load(str(path)).ready_attempts == 5


def test_explicit_file_missing(dirs, tmp_path):
    with pytest.raises(ValidationError):
        manager(dirs).load(str(tmp_path / 'nope.yaml'))


def test_invalid_value(dirs):
    with pytest.raises(ValidationError) as exc:
        manager(dirs, {'PXC_READY_ATTEMPTS': '0'}).load()
    assert 'ready_attempts' in str(exc.value)


def test_settings_file_must_be_mapping(dirs):
    base, _ = dirs
    (base / '.pxc.yaml').write_text('- a\n- b\n')
    with pytest.raises(ValidationError):
        manager(dirs).load()


def test_interpolation_context(dirs):
    base, _ = dirs
    (base / '.env').write_text('DB_HOST=db\nDB_PORT=5432\n')
    context = manager(dirs, {'DB_PORT': '6543'}).interpolation_context()
    assert context['DB_HOST'] == 'db'
    assert context['DB_PORT'] == '6543'
