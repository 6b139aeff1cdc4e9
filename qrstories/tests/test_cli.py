from click.testing import CliRunner

from qrstories.cli import cli


def test_purge_orphans_dry_run_on_memory_store(monkeypatch):
    monkeypatch.setenv('MONGO_URI', 'memory://')
    result = CliRunner().invoke(cli, ['purge-orphans', '--dry-run'])
    assert result.exit_code == 0, result.output
    assert 'Found 0 orphaned blob(s)' in result.output


def test_purge_orphans_requires_mongo_uri(monkeypatch):
    monkeypatch.setenv('MONGO_URI', '')
    result = CliRunner().invoke(cli, ['purge-orphans'])
    assert result.exit_code != 0
    assert 'MONGO_URI' in str(result.exception)
