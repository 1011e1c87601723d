import unittest
from unittest.mock import Mock

from errors import SchemaMismatchError, StoreError
from normalize.models import UNKNOWN_ACCOUNT, WorkLogRecord
from storage.sqlite_store import SqliteStore
from storage.worklog_store import WorklogStore, named_columns

LEGACY_TABLE = """
CREATE TABLE jira_worklogs (
    id TEXT PRIMARY KEY,
    issue_id TEXT NOT NULL,
    issue_key TEXT NOT NULL,
    issue_summary TEXT NOT NULL,
    project_key TEXT NOT NULL,
    project_name TEXT NOT NULL,
    author TEXT NOT NULL,
    started TEXT NOT NULL,
    seconds INTEGER NOT NULL
);
"""


def _record(rid='10:1', started='2024-05-01T09:00:00.000+0000', seconds=3600, **kw):
    values = dict(
        id=rid, issue_id='10', issue_key='OPS-1', issue_summary='Fix login', project_key='OPS',
        project_name='Operations', author='Ana', started=started, seconds=seconds,
        author_account_id='acc-ana', team_names=('Core',), comment='did things',
    )
    values.update(kw)
    return WorkLogRecord(**values)


def _legacy_store():
    sql = SqliteStore(create_schema=False)
    sql.conn.executescript(LEGACY_TABLE)
    return sql


class TestWorklogStoreSqlite(unittest.TestCase):
    def setUp(self):
        self.sql = SqliteStore()
        self.store = WorklogStore(self.sql)

    def tearDown(self):
        self.sql.close()

    def test_upsert_is_idempotent(self):
        records = [_record('10:1'), _record('10:2', started='2024-05-02T09:00:00.000+0000')]
        self.assertEqual(self.store.upsert_worklogs(records), 2)
        self.store.upsert_worklogs(records)
        self.assertEqual(self.store.read_all_worklogs(), records)

    def test_update_overwrites_existing_row(self):
        self.store.upsert_worklogs([_record(seconds=600)])
        self.store.upsert_worklogs([_record(seconds=1200, comment='more')])
        [row] = self.store.read_all_worklogs()
        self.assertEqual(row.seconds, 1200)
        self.assertEqual(row.comment, 'more')

    def test_duplicate_ids_in_one_batch_keep_last(self):
        written = self.store.upsert_worklogs([_record(seconds=600), _record(seconds=900)])
        self.assertEqual(written, 1)
        self.assertEqual([r.seconds for r in self.store.read_all_worklogs()], [900])

    def test_reads_page_through_table_in_started_order(self):
        store = WorklogStore(self.sql, chunk_size=2, page_size=2)
        records = [_record(f'10:{i}', started=f'2024-05-0{i}T09:00:00.000+0000') for i in range(5, 0, -1)]
        store.upsert_worklogs(records)
        self.assertEqual([r.id for r in store.read_all_worklogs()], ['10:1', '10:2', '10:3', '10:4', '10:5'])

    def test_targets_round_trip(self):
        self.store.upsert_contributor_target('Ana', 120)
        self.store.upsert_contributor_target('Ana', 140)
        self.store.upsert_contributor_target('Bob', 80.5)
        self.assertEqual(self.store.read_contributor_targets(), {'Ana': 140.0, 'Bob': 80.5})
        targets = self.store.list_contributor_targets()
        self.assertEqual([t.author for t in targets], ['Ana', 'Bob'])
        self.assertIsNotNone(targets[0].updated_at)


class TestLegacySchema(unittest.TestCase):
    def test_legacy_table_falls_back_to_base_columns(self):
        sql = _legacy_store()
        store = WorklogStore(sql)
        store.upsert_worklogs([_record()])
        [row] = store.read_all_worklogs()
        self.assertEqual(row.id, '10:1')
        self.assertEqual(row.seconds, 3600)
        self.assertEqual(row.author_account_id, UNKNOWN_ACCOUNT)
        self.assertEqual(row.team_names, ())
        self.assertEqual(row.comment, '')
        sql.close()

    def test_migrate_adds_missing_columns(self):
        sql = _legacy_store()
        self.assertEqual(sql.migrate(), ['author_account_id', 'team_names', 'comment'])
        self.assertEqual(sql.migrate(), [])
        store = WorklogStore(sql)
        store.upsert_worklogs([_record()])
        self.assertEqual(store.read_all_worklogs(), [_record()])
        sql.close()

    def test_missing_target_table_means_no_targets(self):
        sql = SqliteStore(create_schema=False)
        self.assertEqual(WorklogStore(sql).read_contributor_targets(), {})
        sql.close()


class TestFallbackWithMockClient(unittest.TestCase):
    def test_missing_comment_column_drops_only_comment(self):
        shapes = []
        persisted = []

        def upsert(table, rows, on_conflict):
            shapes.append(tuple(rows[0]))
            if 'comment' in rows[0]:
                raise StoreError('column "comment" of relation "jira_worklogs" does not exist')
            persisted.extend(rows)

        client = Mock()
        client.upsert.side_effect = upsert
        WorklogStore(client).upsert_worklogs([_record()])
        self.assertEqual(len(shapes), 2)
        [row] = persisted
        self.assertEqual((row['id'], row['author'], row['seconds']), ('10:1', 'Ana', 3600))
        self.assertIn('team_names', shapes[1])
        self.assertIn('author_account_id', shapes[1])
        self.assertNotIn('comment', shapes[1])

    def test_fallback_is_decided_per_chunk(self):
        client = Mock()
        client.upsert.side_effect = [StoreError('column comment does not exist'), None, StoreError('column comment does not exist'), None]
        written = WorklogStore(client, chunk_size=1).upsert_worklogs([_record('10:1'), _record('10:2')])
        self.assertEqual(written, 2)
        self.assertEqual(client.upsert.call_count, 4)

    def test_unrelated_error_propagates_unchanged(self):
        client = Mock()
        client.upsert.side_effect = StoreError('permission denied for table jira_worklogs')
        with self.assertRaises(StoreError) as ctx:
            WorklogStore(client).upsert_worklogs([_record()])
        self.assertNotIsInstance(ctx.exception, SchemaMismatchError)
        self.assertEqual(client.upsert.call_count, 1)

    def test_every_shape_rejected_raises_schema_mismatch(self):
        client = Mock()
        client.upsert.side_effect = [StoreError('column author_account_id does not exist'), StoreError('column issue_summary does not exist')]
        with self.assertRaises(SchemaMismatchError):
            WorklogStore(client).upsert_worklogs([_record()])
        self.assertNotIn('author_account_id', client.upsert.call_args[0][1][0])

    def test_unrelated_column_error_on_fallback_shape_propagates_unchanged(self):
        original = StoreError('column issue_summary does not exist')
        client = Mock()
        client.upsert.side_effect = [StoreError('column comment does not exist'), original]
        with self.assertRaises(StoreError) as ctx:
            WorklogStore(client).upsert_worklogs([_record()])
        self.assertIs(ctx.exception, original)
        self.assertEqual(client.upsert.call_count, 2)

    def test_read_falls_back_and_fills_defaults(self):
        base_row = {'id': '10:1', 'issue_id': '10', 'issue_key': 'OPS-1', 'issue_summary': 's', 'project_key': 'OPS',
                    'project_name': 'Operations', 'author': 'Ana', 'started': '2024-05-01T09:00:00Z', 'seconds': 60}

        def select(table, columns, **kwargs):
            if 'team_names' in columns:
                raise StoreError('column jira_worklogs.team_names does not exist')
            return [dict(base_row, author_account_id='acc-ana')]

        client = Mock()
        client.select.side_effect = select
        [record] = WorklogStore(client).read_all_worklogs()
        self.assertEqual(record.author_account_id, 'acc-ana')
        self.assertEqual(record.team_names, ())
        self.assertEqual(record.comment, '')
        self.assertEqual(client.select.call_count, 2)

    def test_named_columns_requires_column_wording(self):
        self.assertEqual(named_columns('column comment does not exist', ['comment', 'team_names']), ['comment'])
        self.assertEqual(named_columns('comment too long', ['comment']), [])
        self.assertEqual(named_columns('no such column: comments', ['comment']), [])


if __name__ == '__main__':
    unittest.main()
