import json
from unittest.mock import Mock, patch

import pytest

from cli import MAX_ERROR_CHARS, main
from errors import WorklogError
from normalize.models import WorkLogRecord
from settings import ENV_VARS
from storage.sqlite_store import SqliteStore
from storage.worklog_store import WorklogStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in list(ENV_VARS.values()) + ['WORKLOG_CONFIG', 'WORKLOG_PASSWORD']:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def db(tmp_path):
    path = str(tmp_path / 'worklogs.db')
    with SqliteStore(path) as sql:
        WorklogStore(sql).upsert_worklogs([
            WorkLogRecord(id='10:1', issue_id='10', issue_key='OPS-1', issue_summary='Fix login', project_key='OPS',
                          project_name='Operations', author='Ana', started='2024-05-01T09:00:00.000+0000', seconds=7200),
            WorkLogRecord(id='11:1', issue_id='11', issue_key='WEB-2', issue_summary='Landing page', project_key='WEB',
                          project_name='Website', author='Bob', started='2024-05-03T09:00:00.000+0000', seconds=3600),
        ])
    return path


def test_records_reads_from_store(db, capsys):
    assert main(['--db', db, 'records']) == 0
    out = json.loads(capsys.readouterr().out)
    assert [r['id'] for r in out] == ['10:1', '11:1']


def test_summary_filters(db, capsys):
    assert main(['--db', db, 'summary', '--project', 'Website']) == 0
    out = json.loads(capsys.readouterr().out)
    assert out['metrics']['totalHours'] == 1.0
    assert out['strongestAuthor'] == 'Bob'


def test_targets_and_member_drilldown(db, capsys):
    assert main(['--db', db, 'set-target', 'Ana', '40']) == 0
    assert json.loads(capsys.readouterr().out)['targetHours'] == 40.0
    assert main(['--db', db, 'member', 'Ana', '--month', '2024-05']) == 0
    view = json.loads(capsys.readouterr().out)
    assert view['targetHoursMonth'] == 40.0
    assert view['monthProgress'] == 0.05
    assert main(['--db', db, 'targets']) == 0
    assert [t['author'] for t in json.loads(capsys.readouterr().out)] == ['Ana']


def test_member_without_records(db, capsys):
    assert main(['--db', db, 'member', 'Nobody']) == 1
    assert 'No worklogs found' in capsys.readouterr().err


def test_invalid_target_is_reported(db, capsys):
    assert main(['--db', db, 'set-target', 'Ana', '500']) == 1
    assert 'Invalid targetHours' in capsys.readouterr().err


def test_password_gate(db, monkeypatch, capsys):
    monkeypatch.setenv('WORKLOG_APP_PASSWORD', 'hunter2')
    assert main(['--db', db, 'targets']) == 1
    assert 'Unauthorized' in capsys.readouterr().err
    assert main(['--db', db, '--password', 'hunter2', 'targets']) == 0
    monkeypatch.setenv('WORKLOG_PASSWORD', 'hunter2')
    assert main(['--db', db, 'targets']) == 0


def test_missing_credentials_reported(capsys):
    assert main(['sync']) == 1
    assert 'JIRA_BASE_URL' in capsys.readouterr().err


def test_error_messages_are_truncated(capsys):
    service = Mock()
    service.sync.side_effect = WorklogError('x' * 1000)
    with patch('cli.WorklogService.from_settings', return_value=service):
        assert main(['sync']) == 1
    err = capsys.readouterr().err.strip().splitlines()[-1]
    assert err == 'Error: ' + 'x' * MAX_ERROR_CHARS


def test_migrate_requires_db(capsys):
    assert main(['migrate']) == 1


def test_migrate_on_current_schema(db, capsys):
    assert main(['--db', db, 'migrate']) == 0
    assert json.loads(capsys.readouterr().out) == {'addedColumns': []}
