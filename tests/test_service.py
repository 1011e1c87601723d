import unittest
from unittest.mock import Mock

from errors import AuthorizationError, ConfigError, ValidationError
from normalize.models import CreatedWorklog
from service import WorklogService, password_gate
from settings import Settings
from storage.sqlite_store import SqliteStore
from storage.worklog_store import WorklogStore

ISSUE = {
    'id': '10',
    'key': 'OPS-1',
    'fields': {
        'summary': 'Fix login',
        'project': {'key': 'OPS', 'name': 'Operations'},
        'worklog': {'startAt': 0, 'maxResults': 20, 'total': 2, 'worklogs': []},
    },
}
WORKLOGS = [
    {'id': '1', 'author': {'accountId': 'acc-ana', 'displayName': 'Ana'}, 'started': '2024-05-01T09:00:00.000+0000', 'timeSpentSeconds': 3600},
    {'id': '2', 'author': {'accountId': 'acc-ana', 'displayName': 'Ana'}, 'started': '2024-04-30T09:00:00.000+0000', 'timeSpentSeconds': 1800},
]

CREATE_PAYLOAD = {
    'issueKey': 'OPS-1',
    'issueId': '10',
    'issueSummary': 'Fix login',
    'projectKey': 'OPS',
    'projectName': 'Operations',
    'member': 'Ana',
    'memberAccountId': 'acc-ana',
    'started': '2024-05-01T09:00:00Z',
    'seconds': 3600,
    'comment': 'Reviewed the fix',
}


def _jira():
    client = Mock()
    client.search_issues.return_value = [ISSUE]
    client.issue_worklogs.return_value = WORKLOGS
    client.get_user_groups.return_value = ['Team Core', 'jira-users']
    client.get_current_user.return_value = {'accountId': 'acc-ana', 'displayName': 'Ana', 'emailAddress': 'ana@acme.io'}
    client.search_issues_with_changelog.return_value = []
    client.create_worklog.return_value = CreatedWorklog('777', '2024-05-01T09:00:00.000+0000', 3600, '')
    return client


class ServiceTestCase(unittest.TestCase):
    def setUp(self):
        self.sql = SqliteStore()
        self.store = WorklogStore(self.sql)
        self.client = _jira()
        self.settings = Settings(team_group_prefix='team')
        self.service = WorklogService(self.settings, lambda: True, client=self.client, store=self.store)

    def tearDown(self):
        self.sql.close()


class TestGate(ServiceTestCase):
    def test_password_gate(self):
        self.assertTrue(password_gate('s3cret', 's3cret'))
        self.assertFalse(password_gate('nope', 's3cret'))
        self.assertFalse(password_gate(None, 's3cret'))
        self.assertFalse(password_gate('', ''))

    def test_denied_gate_blocks_every_operation(self):
        service = WorklogService(self.settings, lambda: False, client=self.client, store=self.store)
        for call in (service.sync, service.load_records, service.list_targets, lambda: service.set_target('Ana', 10),
                     lambda: service.suggest({'member': 'Ana', 'date': '2024-05-02'}),
                     lambda: service.create_worklog(CREATE_PAYLOAD)):
            with self.assertRaises(AuthorizationError):
                call()
        self.client.search_issues.assert_not_called()
        self.client.create_worklog.assert_not_called()


class TestSync(ServiceTestCase):
    def test_sync_fetches_and_upserts(self):
        records = self.service.sync()
        self.assertEqual([r.id for r in records], ['10:2', '10:1'])
        self.assertEqual(records[0].team_names, ('Team Core',))
        self.assertEqual(self.client.get_user_groups.call_count, 1)
        self.assertEqual(self.store.read_all_worklogs(), records)

    def test_team_field_is_requested(self):
        service = WorklogService(Settings(team_field='customfield_9'), lambda: True, client=self.client)
        service.fetch_worklogs()
        self.assertEqual(self.client.search_issues.call_args[1]['fields'], 'summary,project,worklog,status,customfield_9')

    def test_load_records_seeds_empty_store_once(self):
        self.assertEqual(len(self.service.load_records()), 2)
        self.assertEqual(len(self.service.load_records()), 2)
        self.assertEqual(self.client.search_issues.call_count, 1)

    def test_without_store_records_are_fetched_live(self):
        service = WorklogService(self.settings, lambda: True, client=self.client)
        self.assertEqual(len(service.sync()), 2)
        with self.assertRaises(ConfigError):
            service.upsert_records([])
        self.assertEqual(service.read_targets(), {})


class TestTargets(ServiceTestCase):
    def test_set_target_validates_range(self):
        for bad in (-1, 401, 'abc', float('nan'), None, True):
            with self.assertRaises(ValidationError):
                self.service.set_target('Ana', bad)
        with self.assertRaises(ValidationError):
            self.service.set_target('  ', 10)
        self.assertEqual(self.service.read_targets(), {})

    def test_set_target_persists(self):
        target = self.service.set_target(' Ana ', '120')
        self.assertEqual(target.author, 'Ana')
        self.assertEqual(self.service.read_targets(), {'Ana': 120.0})
        self.service.set_target('Ana', 0)
        self.assertEqual(self.service.read_targets(), {'Ana': 0.0})

    def test_set_target_needs_store(self):
        service = WorklogService(self.settings, lambda: True, client=self.client)
        with self.assertRaises(ConfigError):
            service.set_target('Ana', 10)


class TestSuggest(ServiceTestCase):
    def test_validation_happens_before_remote_calls(self):
        for payload in ({'date': '2024-05-02'}, {'member': 'Ana'}, {'member': 'Ana', 'date': '2024/05/02'},
                        {'member': 'Ana', 'date': '2024-5-2'},
                        {'member': 'Ana', 'date': '2024-05-02', 'existingIssueKeys': 'OPS-1'}):
            with self.assertRaises(ValidationError):
                self.service.suggest(payload)
        self.client.get_current_user.assert_not_called()

    def test_only_the_api_user_may_request_suggestions(self):
        with self.assertRaises(AuthorizationError):
            self.service.suggest({'member': 'Bob', 'date': '2024-05-02'})
        self.client.search_issues_with_changelog.assert_not_called()

    def test_api_user_matches_by_name_email_or_account(self):
        for payload in ({'member': ' ana '}, {'member': 'ANA@acme.io'}, {'member': 'Ana Lima', 'accountId': 'acc-ana'}):
            self.assertEqual(self.service.suggest(dict(payload, date='2024-05-02', projectKey='all')), [])
        jql = self.client.search_issues_with_changelog.call_args[0][0]
        self.assertNotIn('project', jql)


class TestCreateWorklog(ServiceTestCase):
    def test_invalid_payload_never_reaches_jira(self):
        bad_payloads = [
            dict(CREATE_PAYLOAD, issueKey=''),
            dict(CREATE_PAYLOAD, projectName=None),
            dict(CREATE_PAYLOAD, member=' '),
            dict(CREATE_PAYLOAD, started='tomorrow'),
            dict(CREATE_PAYLOAD, seconds=0),
            dict(CREATE_PAYLOAD, seconds='lots'),
        ]
        for payload in bad_payloads:
            with self.assertRaises(ValidationError):
                self.service.create_worklog(payload)
        self.client.create_worklog.assert_not_called()

    def test_created_worklog_is_mirrored_into_store(self):
        created = self.service.create_worklog(CREATE_PAYLOAD)
        self.client.create_worklog.assert_called_once_with('OPS-1', '2024-05-01T09:00:00Z', 3600.0, 'Reviewed the fix')
        self.assertEqual(created.remote_id, '777')
        self.assertEqual(created.comment, 'Reviewed the fix')

        [record] = self.store.read_all_worklogs()
        self.assertEqual(record.id, '10:777')
        self.assertEqual(record.author, 'Ana')
        self.assertEqual(record.author_account_id, 'acc-ana')
        self.assertEqual(record.started, '2024-05-01T09:00:00.000+0000')
        self.assertEqual(record.comment, 'Reviewed the fix')

    def test_create_without_store_only_posts(self):
        service = WorklogService(self.settings, lambda: True, client=self.client)
        self.assertEqual(service.create_worklog(CREATE_PAYLOAD).to_dict()['remoteId'], '777')
        self.assertEqual(self.store.read_all_worklogs(), [])


if __name__ == '__main__':
    unittest.main()
