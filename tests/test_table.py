from context import cache, config, connection, errors, hooks, results, Table, table
import os
import shutil
import sqlite3
import unittest


DB_FILEPATH = 'test.db'
CACHE_PATH = 'test_table_cache'


def _create_schema() -> None:
    db = sqlite3.connect(DB_FILEPATH)
    db.executescript('''
        create table users (
            id integer primary key autoincrement,
            name text unique,
            age integer,
            score real default 0
        );
        create index idx_users_age on users (age);
        create table posts (
            id integer primary key,
            user_id integer references users(id),
            title text
        );
    ''')
    db.commit()
    db.close()


class TestTable(unittest.TestCase):
    def setUp(self) -> None:
        if os.path.isfile(DB_FILEPATH):
            os.remove(DB_FILEPATH)
        if os.path.isdir(CACHE_PATH):
            shutil.rmtree(CACHE_PATH)
        _create_schema()
        config.configure(connections={'_default': DB_FILEPATH}, file_cache_path=CACHE_PATH)
        Table.reset()
        self.users = table('users')
        return super().setUp()

    def tearDown(self) -> None:
        Table.reset()
        if os.path.isfile(DB_FILEPATH):
            os.remove(DB_FILEPATH)
        if os.path.isdir(CACHE_PATH):
            shutil.rmtree(CACHE_PATH)
        return super().tearDown()

    def _seed(self) -> None:
        self.users.inserts([
            {'name': 'alice', 'age': 30},
            {'name': 'bob', 'age': 25},
            {'name': 'carol', 'age': 35},
        ])

    def test_table_returns_one_handle_per_alias(self):
        assert table('users') is self.users
        assert table('users', file_cache=True) is not self.users
        with self.assertRaises(errors.UsageError):
            table()

    def test_table_handles_are_rebuilt_after_configure(self):
        config.configure(connections={'_default': DB_FILEPATH}, prefix='app_')
        handle = table('users')
        assert handle is not self.users
        assert handle.table_name == 'app_users'

    def test_Table_insert_returns_generated_id(self):
        assert self.users.insert({'name': 'alice', 'age': 30}) == 1
        assert self.users.insert({'name': 'bob', 'age': None}) == 2
        assert self.users.get('age', {'id': 2}) is None
        assert self.users.get('score', {'id': 2}) == 0

    def test_Table_insert_ignore_returns_zero_for_ignored_row_without_id(self):
        self.users.insert({'name': 'alice'})
        assert self.users.insert_ignore({'name': 'alice'}) == 0
        assert self.users.insert_ignore({'id': 1, 'name': 'alice'}) == 1
        assert self.users.insert_ignore({'name': 'bob'}) == self.users.get_id({'name': 'bob'})

    def test_Table_replace_overwrites_row(self):
        self.users.insert({'name': 'alice', 'age': 30})
        assert self.users.replace({'id': 1, 'name': 'alicia', 'age': 31}) == 1
        assert self.users.row('*', {'id': 1}).name == 'alicia'
        assert self.users.count() == 1

    def test_Table_inserts_returns_count(self):
        self._seed()
        assert self.users.count() == 3
        assert self.users.count({'age >': 26}) == 2

    def test_Table_update_and_delete(self):
        self._seed()
        assert self.users.update({'age': 31}, {'name': 'alice'}) == 1
        assert self.users.get_int('age', {'name': 'alice'}) == 31
        assert self.users.delete({'name': ['bob', 'carol']}) == 2
        assert self.users.count() == 1
        assert self.users.delete_all() == 1
        assert self.users.count() == 0

    def test_Table_update_and_delete_require_where(self):
        self._seed()
        with self.assertRaises(errors.ConsistencyError) as e:
            self.users.update({'age': 1})
        assert str(e.exception) == 'update on users requires a where condition'
        with self.assertRaises(errors.ConsistencyError):
            self.users.delete()
        with self.assertRaises(errors.ConsistencyError):
            self.users.delete({})
        assert self.users.count() == 3

    def test_Table_statement_is_cleared_after_failure(self):
        self.users.where({'name': 'bob'})
        with self.assertRaises(errors.ConsistencyError):
            self.users.update({'age': 1}, {})
        assert self.users.statement.operation is None
        assert self.users.statement.condition is None

    def test_Table_fluent_state_is_used_once(self):
        self._seed()
        rows = self.users.where({'age >=': 30}).order_by({'age': 'desc'}).select_array('name')
        assert [r['name'] for r in rows] == ['carol', 'alice']
        assert len(self.users.select_array('name')) == 3

    def test_Table_increase_and_decrease(self):
        self._seed()
        assert self.users.increase('score', {'name': 'bob'}, 2) == 1
        assert self.users.decrease(['score', 'age'], {'name': 'bob'}) == 1
        row = self.users.row(['score', 'age'], {'name': 'bob'})
        assert row.score == 1
        assert row.age == 24
        with self.assertRaises(errors.ConsistencyError):
            self.users.increase('score')

    def test_Table_reads(self):
        self._seed()
        assert self.users.exist({'name': 'bob'})
        assert self.users.not_exist({'name': 'dave'})
        assert self.users.get('name', {'id': 3}) == 'carol'
        assert self.users.get('name', {'id': 99}) is None
        assert self.users.get_id({'name': 'bob'}) == 2
        assert self.users.get_float('age', 1) == 30.0
        assert self.users.sum('age') == 90.0
        assert self.users.col('name', None, 'id') == ['alice', 'bob', 'carol']
        assert self.users.col(['id', 'name'], {'age <': 35}, 'id') == {1: 'alice', 2: 'bob'}
        assert self.users.row('*', {'id': 99}).is_empty()

        result = self.users.select('*', None, 'id', 2)
        assert isinstance(result, results.Result)
        assert len(result) == 2
        assert result.column('name') == ['alice', 'bob']
        assert result.first().name == 'alice'

        assert self.users.sql('id', {'name': 'bob'}) == \
            'select id from "users" where "name" = \'bob\''

    def test_Table_query_and_execute(self):
        self._seed()
        rows = self.users.query('select name from users where age > ?', [26])
        assert sorted(r['name'] for r in rows) == ['alice', 'carol']
        named = self.users.query_raw('select name from users where id = :id', {'id': 2})
        assert named == [{'name': 'bob'}]
        assert self.users.execute('update users set age = age + 1 where id = ?', 1) == 1
        assert self.users.get('age', 1) == 31

    def test_Table_raw_sql_must_stay_on_its_table(self):
        with self.assertRaises(errors.ConsistencyError):
            self.users.query('select * from users join posts on posts.user_id = users.id')
        with self.assertRaises(errors.ConsistencyError):
            self.users.query('select * from posts')
        with self.assertRaises(errors.ConsistencyError):
            self.users.execute('delete from posts')

    def test_Table_multi_mode_allows_several_tables(self):
        self._seed()
        config.configure(connections={'_default': DB_FILEPATH}, enable_multi=True)
        users = table('users')
        table('posts').insert({'user_id': 2, 'title': 'hello'})
        rows = users.query(
            'select users.name, posts.title from users join posts on posts.user_id = users.id'
        )
        assert rows.all() == [{'name': 'bob', 'title': 'hello'}]
        with self.assertRaises(errors.ConsistencyError):
            users.begin()

    def test_Table_join_in_single_table_mode(self):
        self._seed()
        table('posts').insert({'user_id': 1, 'title': 'first'})
        rows = self.users.fields(['users.name', 'posts.title']).join(
            'posts', {'posts.user_id': 'users.id'}
        ).select_array()
        assert rows == [{'name': 'alice', 'title': 'first'}]

    def test_Table_bind_errors(self):
        with self.assertRaises(errors.BindError):
            self.users.query('select * from users where id = ?', [1, 2])

    def test_Table_before_hooks_can_interrupt(self):
        self._seed()
        stop = lambda *args: hooks.INTERRUPT
        for verb in ('insert', 'update', 'delete', 'crease', 'execute', 'select', 'query'):
            self.users.hook_before(verb, stop)

        assert self.users.insert({'name': 'dave'}) is None
        assert self.users.update({'age': 1}, 1) is None
        assert self.users.delete(1) is None
        assert self.users.delete_all() is None
        assert self.users.increase('age', 1) == 0
        assert self.users.execute('delete from users') is None
        assert self.users.select_array() == []
        assert self.users.query_raw('select * from users') == []
        assert list(self.users.select_handle()) == []

        self.users.hooks.clear()
        assert self.users.count() == 3
        assert self.users.get('age', 1) == 30

    def test_Table_hooks_rewrite_arguments_and_results(self):
        self.users.hook_before('insert', lambda op, row: (op, {**row, 'age': 40}))
        self.users.hook_after('select', lambda rows: ([{**r, 'seen': True} for r in rows],))
        self.users.insert({'name': 'dave'})
        assert self.users.select_array('age') == [{'age': 40, 'seen': True}]

    def test_Table_verbs_called_from_hooks_do_not_disturb_the_running_statement(self):
        self._seed()
        counts = []
        def count_bobs(row, where):
            counts.append(self.users.count({'age': 25}))
            return (row, where)
        self.users.hook_before('update', count_bobs)

        assert self.users.where({'name': 'alice'}).update({'age': 99}) == 1
        assert counts == [1]
        assert self.users.get('age', {'name': 'alice'}) == 99
        assert self.users.get('age', {'name': 'bob'}) == 25
        assert self.users.statement.condition is None

    def test_Table_after_hook_returning_a_list_replaces_the_rows(self):
        self._seed()
        self.users.hook_after('select', lambda rows: [r for r in rows if r['age'] > 26])
        rows = self.users.select_array('*', None, 'id')
        assert [r['name'] for r in rows] == ['alice', 'carol']

    def test_Table_cached_read_skips_the_connection(self):
        self._seed()
        calls = []
        fetch = self.users.manager.fetch
        def counting_fetch(*args, **kwargs):
            calls.append(args[1])
            return fetch(*args, **kwargs)
        self.users.manager.fetch = counting_fetch

        first = self.users.select_array('*', {'age >': 26})
        second = self.users.select_array('*', {'age >': 26})
        assert first == second
        assert len(calls) == 1

    def test_Table_rejects_dialect_and_manager_without_the_protocols(self):
        with self.assertRaises(TypeError) as e:
            Table('users', dialect=object())
        assert str(e.exception) == 'dialect must implement DialectProtocol'
        with self.assertRaises(TypeError) as e:
            Table('users', manager=object())
        assert str(e.exception) == 'manager must implement ConnectionManagerProtocol'

    def test_Table_reads_are_cached_until_a_write(self):
        self._seed()
        first = self.users.select_array('*', {'id': 1})
        assert not self.users.from_cache
        assert self.users.select_array('*', {'id': 1}) == first
        assert self.users.from_cache

        self.users.update({'age': 50}, {'id': 1})
        assert self.users.select_array('age', {'id': 1}) == [{'age': 50}]
        assert not self.users.from_cache

    def test_Table_disable_cache_applies_to_one_read(self):
        self._seed()
        self.users.select_array()
        self.users.disable_cache().select_array()
        assert not self.users.from_cache
        self.users.select_array()
        assert self.users.from_cache

    def test_Table_no_cache_block(self):
        self._seed()
        self.users.select_array()
        with cache.no_cache():
            self.users.select_array()
            assert not self.users.from_cache

    def test_Table_file_cache(self):
        self._seed()
        files = table('users', file_cache=True)
        assert files.select_array('name', 1) == [{'name': 'alice'}]
        assert files.select_array('name', 1) == [{'name': 'alice'}]
        assert files.from_cache
        assert os.path.isdir(os.path.join(CACHE_PATH, 'entries'))

        self.users.update({'name': 'alicia'}, 1)
        assert files.select_array('name', 1) == [{'name': 'alicia'}]
        assert not files.from_cache

    def test_Table_select_handle_restores_buffered_mode(self):
        self._seed()
        rows = self.users.select_handle('name', None, 'id')
        conn = self.users.manager.connect('users', 'read')
        assert next(rows) == {'name': 'alice'}
        assert not conn.buffered
        assert list(rows) == [{'name': 'bob'}, {'name': 'carol'}]
        assert conn.buffered

    def test_Table_operation_log(self):
        log = []
        config.configure(
            connections={'_default': DB_FILEPATH},
            operation_log=lambda table, operation, payload: log.append((table, operation, payload)),
            no_log_tables=('posts',),
        )
        users = table('users')
        users.insert({'name': 'alice', 'age': 30})
        users.update({'age': 31}, {'id': 1})
        table('posts').insert({'user_id': 1, 'title': 'x'})

        assert [(t, o) for t, o, _ in log] == [('users', 'insert'), ('users', 'update')]
        inserted = log[0][2]
        assert inserted['before'] is None
        assert inserted['after'][0]['name'] == 'alice'
        assert inserted['affected'] == 1
        updated = log[1][2]
        assert updated['before'][0]['age'] == 30
        assert updated['after'][0]['age'] == 31
        assert updated['sql'] == 'update "users" set "age" = 31 where "id" = 1'
        assert updated['params'] == [31, 1]

    def test_Table_auto_fields(self):
        db = sqlite3.connect(DB_FILEPATH)
        db.execute('create table notes (id integer primary key, body text, created text, updated text)')
        db.commit()
        db.close()
        config.configure(connections={'_default': DB_FILEPATH}, auto_field=True)
        notes = table('notes')
        notes.insert({'body': 'a'})
        row = notes.row('*', 1)
        assert row.created and row.updated
        notes.update({'body': 'b', 'updated': 'later'}, 1)
        assert notes.get('updated', 1) == 'later'

    def test_Table_transactions(self):
        with self.assertRaises(errors.ConsistencyError) as e:
            self.users.commit()
        assert str(e.exception) == 'commit without an open transaction'
        with self.assertRaises(errors.ConsistencyError):
            self.users.rollback()

        assert self.users.begin() == 1
        self.users.insert({'name': 'alice'})
        assert self.users.begin() == 2
        self.users.insert({'name': 'bob'})
        assert self.users.rollback() == 1
        assert self.users.commit() == 0
        assert self.users.col('name') == ['alice']

    def test_Table_rollback_discards_writes(self):
        self.users.begin()
        self.users.insert({'name': 'alice'})
        assert self.users.count() == 1
        self.users.rollback()
        assert self.users.count() == 0

    def test_Table_introspection(self):
        columns = self.users.meta()
        assert list(columns) == ['id', 'name', 'age', 'score']
        assert columns['id']['primary_key']
        assert columns['id']['auto_increment']
        assert columns['score']['has_default']
        assert self.users.meta('name')['type'] == 'text'
        assert self.users.primary_key() == 'id'

        index = self.users.index('idx_users_age')
        assert index == {'table_name': 'users', 'is_unique': False, 'columns': ['age']}
        assert any([i['is_unique'] for i in self.users.index().values()])

        assert self.users.create_statement().lower().startswith('create table users')
        assert table('posts').foreign_keys() == {
            'user_id': {'table': 'users', 'column': 'id'}
        }
        assert self.users.foreign_keys() == {}
        assert 'users' in self.users.show_tables()
        assert 'posts' in self.users.show_tables()

    def test_Table_connections_by_role(self):
        config.configure(connections={
            'users': {'read': DB_FILEPATH, 'write': DB_FILEPATH},
        })
        users = table('users')
        assert users.manager.connect('users', 'read') is users.manager.connect('users', 'write')
        with self.assertRaises(errors.UsageError):
            users.manager.connect('posts')
        assert isinstance(users.manager, connection.SqliteConnectionManager)


if __name__ == '__main__':
    unittest.main()
