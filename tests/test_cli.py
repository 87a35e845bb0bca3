# tests/test_cli.py
"""
Tests for CLI interface
"""
import json
import zipfile

import pytest
from click.testing import CliRunner

from ccbridge import cli as cli_module
from ccbridge import config_utils
from ccbridge.cli import cli


ORGANIZATION = (
    '<item identifier="root">'
    '<item identifier="I1"><title>Week 1</title>'
    '<item identifier="I2" identifierref="R1"><title>Intro</title></item>'
    '<item identifier="I3"><title>Empty slot</title></item>'
    '</item></item>'
)

RESOURCES = (
    '<resource identifier="R1" type="webcontent" href="wiki/intro.html">'
    '<file href="wiki/intro.html"/></resource>'
)

FILES = {
    "wiki/intro.html": '<p>Welcome</p><img src="../img/a.png" alt="Diagram">',
    "img/a.png": b"\x89PNG\r\n\x1a\nfake",
}


def write_tree(root, files):
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_bytes(content)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def quiet_cli(tmp_path, monkeypatch):
    """Leave root logging alone and ignore any real config."""
    monkeypatch.setattr(cli_module, "setup_logging", lambda **kwargs: None)
    monkeypatch.setattr(config_utils, "GLOBAL_CONFIG_PATH", tmp_path / "no-global" / "config.yaml")
    for name in ("CCBRIDGE_ACCESS_TOKEN", "CCBRIDGE_TOKEN_FILE", "CCBRIDGE_MAX_WORKERS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def course_dir(tmp_path, manifest_builder):
    """Extracted package directory."""
    root = tmp_path / "course"
    write_tree(root, dict(FILES, **{"imsmanifest.xml": manifest_builder(ORGANIZATION, RESOURCES)}))
    return root


@pytest.fixture
def course_zip(tmp_path, manifest_builder):
    """The same package as an .imscc archive."""
    path = tmp_path / "course.imscc"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("imsmanifest.xml", manifest_builder(ORGANIZATION, RESOURCES))
        for name, content in FILES.items():
            archive.writestr(name, content)
    return path


class TestCLI:
    """Tests for CLI commands"""

    def test_cli_help(self, runner):
        """Should show help message"""
        result = runner.invoke(cli, ['--help'])
        assert result.exit_code == 0
        assert "convert" in result.output
        assert "publish" in result.output

    def test_version_command(self, runner):
        result = runner.invoke(cli, ['version'])
        assert result.exit_code == 0
        assert "ccbridge v1.0.0" in result.output

    def test_config_template(self, runner):
        result = runner.invoke(cli, ['config-template', '--no-comments'])
        assert result.exit_code == 0
        assert "root_folder: LMS Import" in result.output
        assert "#" not in result.output


class TestConvertCommand:
    """Tests for ccbridge convert"""

    def test_convert_directory(self, runner, course_dir):
        result = runner.invoke(cli, ['convert', str(course_dir)])

        assert result.exit_code == 0, result.output
        assert "Biology 101" in result.output
        assert "Week 1" in result.output
        assert "Intro" in result.output
        assert "1 item(s), 1 skipped" in result.output

    def test_convert_archive(self, runner, course_zip):
        result = runner.invoke(cli, ['convert', str(course_zip)])

        assert result.exit_code == 0, result.output
        assert "1 item(s), 1 skipped" in result.output

    def test_show_skips(self, runner, course_dir):
        result = runner.invoke(cli, ['convert', str(course_dir), '--show-skips'])

        assert result.exit_code == 0
        assert "Empty slot [I3]: No resource reference and no child items" in result.output

    def test_json_output(self, runner, course_dir, tmp_path):
        out = tmp_path / "items.json"

        result = runner.invoke(cli, ['convert', str(course_dir), '--json', str(out)])

        assert result.exit_code == 0
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["course"] == "Biology 101"
        [item] = data["items"]
        assert item["title"] == "Intro"
        assert item["topic"] == "Week 1"
        assert item["attachments"][0]["target_name"] == "a.png"
        assert data["skipped"][0]["id"] == "I3"

    def test_missing_manifest_fails(self, runner, tmp_path):
        empty = tmp_path / "empty"
        write_tree(empty, {"readme.txt": "not a cartridge"})

        result = runner.invoke(cli, ['convert', str(empty)])

        assert result.exit_code == 1
        assert "imsmanifest.xml not found" in result.output


class TestPublishCommand:
    """Tests for ccbridge publish"""

    def test_dry_run_calls_nothing(self, runner, course_dir, tmp_path, monkeypatch, mocker):
        monkeypatch.chdir(tmp_path)
        build = mocker.patch.object(cli_module, "build_services")

        result = runner.invoke(cli, ['publish', str(course_dir), '--dry-run'])

        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output
        assert "LMS Import/Biology 101" in result.output
        build.assert_not_called()

    def test_publish_without_token_fails(self, runner, course_dir, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        result = runner.invoke(cli, ['publish', str(course_dir)])

        assert result.exit_code == 1
        assert "access token not configured" in result.output

    def test_publish_uses_services(self, runner, course_dir, tmp_path, monkeypatch, google_services):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CCBRIDGE_ACCESS_TOKEN", "ya29.test-token")
        monkeypatch.setattr(cli_module, "build_services", lambda token, config: google_services)
        out = tmp_path / "published.json"

        result = runner.invoke(cli, ['publish', str(course_dir), '--json', str(out)])

        assert result.exit_code == 0, result.output
        assert "Published 1 of 1 item(s)" in result.output
        assert "a.png: https://drive.example/" in result.output
        [item] = json.loads(out.read_text(encoding="utf-8"))["items"]
        assert item["attachments"][0]["drive_id"] is not None
        assert google_services.docs.created == ["Intro"]
