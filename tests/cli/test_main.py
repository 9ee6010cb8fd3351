import pytest
from click.testing import CliRunner
from unittest import mock

from story_archiver.cli.main import archiver

# Handlers are mocked within main.py's context
MOCK_PATH = "story_archiver.cli.main"


@pytest.fixture
def runner():
    return CliRunner()


def test_add_passes_urls_to_handler(runner):
    urls = ["https://www.royalroad.com/fiction/1", "https://archiveofourown.org/works/2"]

    with mock.patch(f"{MOCK_PATH}.add_handler") as mock_handler:
        result = runner.invoke(archiver, ['add'] + urls)

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        mock_handler.assert_called_once()
        called_kwargs = mock_handler.call_args[1]
        assert called_kwargs['urls'] == urls
        assert called_kwargs['db_path'] is None


def test_add_requires_a_url(runner):
    with mock.patch(f"{MOCK_PATH}.add_handler") as mock_handler:
        result = runner.invoke(archiver, ['add'])

        assert result.exit_code != 0
        mock_handler.assert_not_called()


def test_db_option_reaches_handlers(runner, tmp_path):
    db_path = str(tmp_path / "custom.db")

    with mock.patch(f"{MOCK_PATH}.list_handler") as mock_handler:
        result = runner.invoke(archiver, ['--db', db_path, 'list'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        assert mock_handler.call_args[1]['db_path'] == db_path


def test_update_default_params(runner):
    with mock.patch(f"{MOCK_PATH}.update_handler") as mock_handler:
        result = runner.invoke(archiver, ['update'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        called_kwargs = mock_handler.call_args[1]
        assert called_kwargs['story'] is None
        assert called_kwargs['force'] is False
        assert called_kwargs['db_path'] is None


def test_update_single_story_forced(runner):
    with mock.patch(f"{MOCK_PATH}.update_handler") as mock_handler:
        result = runner.invoke(archiver, ['update', 'Mother of Learning', '-f'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        called_kwargs = mock_handler.call_args[1]
        assert called_kwargs['story'] == 'Mother of Learning'
        assert called_kwargs['force'] is True


def test_delete_passes_search(runner):
    with mock.patch(f"{MOCK_PATH}.delete_handler") as mock_handler:
        result = runner.invoke(archiver, ['delete', 'rr:1'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        assert mock_handler.call_args[1]['search'] == 'rr:1'


def test_export_passes_story(runner):
    with mock.patch(f"{MOCK_PATH}.export_handler") as mock_handler:
        result = runner.invoke(archiver, ['export', 'rr:1'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        assert mock_handler.call_args[1]['story'] == 'rr:1'


def test_list_sources(runner):
    with mock.patch(f"{MOCK_PATH}.list_sources_handler") as mock_handler:
        result = runner.invoke(archiver, ['list-sources'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        mock_handler.assert_called_once_with()


def test_allow_site(runner):
    with mock.patch(f"{MOCK_PATH}.allow_site_handler") as mock_handler:
        result = runner.invoke(archiver, ['allow-site', 'royalroad.com', 'royalroad'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        called_kwargs = mock_handler.call_args[1]
        assert called_kwargs['host'] == 'royalroad.com'
        assert called_kwargs['fetcher_name'] == 'royalroad'


def test_help_lists_commands(runner):
    result = runner.invoke(archiver, ['--help'])

    assert result.exit_code == 0
    for command in ('add', 'update', 'delete', 'export', 'list', 'list-sources', 'allow-site'):
        assert command in result.output
