"""Tests for movelc.config — settings store, project file and typed accessors."""
from __future__ import annotations

import sys
from pathlib import Path

from movelc.config import PROJECT_CONFIG_NAME, Config, Settings, read_project_settings


class TestSettings:
    def test_nested_get(self):
        s = Settings({'server': {'path': '/bin/x'}})
        assert s.get('server.path') == '/bin/x'

    def test_flat_dotted_key(self):
        s = Settings({'server.path': '/bin/x'})
        assert s.get('server.path') == '/bin/x'

    def test_missing_default(self):
        assert Settings().get('a.b', 5) == 5

    def test_update_creates_nesting(self):
        s = Settings()
        s.update('trace.server', 'verbose')
        assert s.snapshot() == {'trace': {'server': 'verbose'}}

    def test_update_none_removes(self):
        s = Settings({'trace': {'server': 'verbose'}})
        s.update('trace.server', None)
        assert s.get('trace.server') is None

    def test_snapshot_is_a_copy(self):
        s = Settings({'a': {'b': 1}})
        snap = s.snapshot()
        snap['a']['b'] = 2
        assert s.get('a.b') == 1


class TestProjectFile:
    def test_missing_file(self, tmp_path):
        assert read_project_settings(str(tmp_path)).snapshot() == {}

    def test_no_workspace(self):
        assert read_project_settings(None).snapshot() == {}

    def test_reads_section(self, tmp_path):
        (tmp_path / PROJECT_CONFIG_NAME).write_text(
            '[move-on-aptos]\n'
            'server.path = "/opt/als"\n'
            'statusBar.clickAction = "stopServer"\n'
            '[other]\nx = 1\n'
        )
        settings = read_project_settings(str(tmp_path))
        assert settings.get('server.path') == '/opt/als'
        assert settings.get('statusBar.clickAction') == 'stopServer'
        assert settings.get('other') is None

    def test_invalid_toml(self, tmp_path):
        (tmp_path / PROJECT_CONFIG_NAME).write_text('[move-on-aptos\n')
        assert read_project_settings(str(tmp_path)).snapshot() == {}


class TestConfig:
    def test_defaults(self):
        c = Config()
        assert c.server_path is None
        assert c.server_extra_env == {}
        assert c.show_syntax_tree is False
        assert c.initialize_stopped is False
        assert c.status_bar_click_action == 'openLogs'
        assert c.trace_server is None
        assert c.detached_files is False

    def test_server_path_home_expansion(self):
        c = Config(Settings({'server': {'path': '~/bin/als'}}))
        expected = str(Path.home() / 'bin' / 'als')
        if sys.platform == 'win32':
            expected += '.exe'
        assert c.server_path == str(Path(expected).resolve())

    def test_server_path_is_absolute(self):
        c = Config(Settings({'server': {'path': 'relative/als'}}))
        assert Path(c.server_path).is_absolute()

    def test_extra_env_substitution(self):
        c = Config(
            Settings({'server': {'extraEnv': {'LOG_DIR': '${workspaceFolder}/logs', 'N': 2}}}),
            workspace_folder='/w',
        )
        assert c.server_extra_env == {'LOG_DIR': '/w/logs', 'N': '2'}

    def test_extra_env_not_a_table(self):
        c = Config(Settings({'server': {'extraEnv': 'oops'}}))
        assert c.server_extra_env == {}

    def test_booleans(self):
        c = Config(Settings({'showSyntaxTree': True, 'initializeStopped': True, 'checkOnSave': True}))
        assert c.show_syntax_tree and c.initialize_stopped and c.check_on_save

    def test_section_substitutes_builtins(self):
        c = Config(Settings({'cargo': {'target': '${workspaceFolder}/t'}}), workspace_folder='/w')
        assert c.section() == {'cargo': {'target': '/w/t'}}

    def test_reads_live_settings(self):
        settings = Settings()
        c = Config(settings)
        settings.update('trace.server', 'verbose')
        assert c.trace_server == 'verbose'
