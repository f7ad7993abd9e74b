from context import dialect, errors, interfaces, shapes, statement
import unittest


class TestStatementBuilder(unittest.TestCase):
    def setUp(self) -> None:
        self.dialect = dialect.SqliteDialect()
        self.builder = statement.StatementBuilder('users', self.dialect)
        return super().setUp()

    def new_builder(self) -> statement.StatementBuilder:
        return statement.StatementBuilder('users', self.dialect)

    def test_StatementBuilder_is_null_until_an_operation_is_chosen(self):
        assert self.builder.is_null()
        assert not self.builder.is_query()
        self.builder.select()
        assert not self.builder.is_null()
        assert self.builder.is_query()
        assert not self.new_builder().insert({'a': 1}).is_query()

    def test_StatementBuilder_select_renders_literal_and_prepared_forms(self):
        b = self.builder.select(
            ['id', 'name'], {'dept_id': 5, 'name': "O'Brien"}, 'id desc', 10
        ).create()
        assert b.sql == 'select "id","name" from "users" where "dept_id" = 5 ' + \
            "and \"name\" = 'O''Brien' order by id desc limit 10", b.sql
        assert b.prepare == 'select "id","name" from "users" where "dept_id" = ? ' + \
            'and "name" = ? order by id desc limit 10', b.prepare
        assert b.params == [5, "O'Brien"]
        assert b.tables == ['users']

    def test_StatementBuilder_mapping_where_differs_only_in_value_positions(self):
        wheres = [
            {'id': 1},
            {'id in': [1, 2, 3]},
            {'age >': 3, 'name like': 'a%'},
            {'deleted_at': None},
            {'tag': ['a', 'b']},
            {'x not in': [1], 'y !=': 2, 'z <=': 1.5},
            {'id in': []},
            {'code': b'\x01\x02', 'flag': True},
        ]
        for where in wheres:
            b = self.new_builder().select(None, where).create()
            assert b.prepare.count('?') == len(b.params), where
            assert self.dialect.interpolate(b.prepare, b.params) == b.sql, where

    def test_StatementBuilder_create_is_idempotent(self):
        b = self.builder.select(['id'], {'id in': [1, 2]}, {'id': 'desc'}, (5, 10))
        first = (b.create().sql, b.prepare, list(b.params), list(b.tables))
        second = (b.create().sql, b.prepare, list(b.params), list(b.tables))
        assert first == second

    def test_StatementBuilder_update_and_delete_require_a_where(self):
        with self.assertRaises(errors.ConsistencyError) as e:
            self.new_builder().update({'name': 'x'}).create()
        assert str(e.exception) == 'update on users requires a where condition'

        with self.assertRaises(errors.ConsistencyError):
            self.new_builder().update({'name': 'x'}, {}).create()
        with self.assertRaises(errors.ConsistencyError):
            self.new_builder().delete().create()
        with self.assertRaises(errors.ConsistencyError):
            self.new_builder().delete('').create()
        with self.assertRaises(errors.ConsistencyError):
            self.new_builder().crease('+', 'score').create()

    def test_StatementBuilder_delete_all_renders_full_delete(self):
        b = self.builder.delete_all().create()
        assert b.sql == 'delete from "users"'
        assert b.params == []

    def test_StatementBuilder_unknown_operation_raises(self):
        with self.assertRaises(errors.UnsupportedOperationError):
            self.builder.create()
        self.builder.operation = 'merge'
        with self.assertRaises(errors.UnsupportedOperationError) as e:
            self.builder.create()
        assert str(e.exception) == 'unsupported operation: merge'

    def test_StatementBuilder_join_requires_exactly_one_on(self):
        self.builder.join('left', 'depts')
        with self.assertRaises(errors.ConsistencyError):
            self.builder.join('inner', 'teams')
        self.builder.on({'users.dept_id': 'depts.id'})
        with self.assertRaises(errors.ConsistencyError):
            self.builder.on('users.id = depts.id')

        with self.assertRaises(errors.ConsistencyError):
            self.new_builder().on('a = b')

        with self.assertRaises(errors.ConsistencyError):
            self.new_builder().select().join('left', 'depts').create()

    def test_StatementBuilder_join_renders_and_reports_tables(self):
        b = self.builder.select('*').join(
            'left', 'depts', {'users.dept_id': 'depts.id'}
        ).create()
        assert b.sql == 'select * from "users" left join "depts" ' + \
            'on "users"."dept_id" = "depts"."id"', b.sql
        assert b.tables == ['users', 'depts']

    def test_StatementBuilder_raw_query_extracts_tables(self):
        b = self.builder.query(
            'select * from users u join depts d on u.dept_id = d.id where u.id = ?', [3]
        ).create()
        assert b.tables == ['users', 'depts']
        assert b.sql.endswith('where u.id = 3')
        assert b.prepare.endswith('where u.id = ?')
        assert b.params == [3]

        b = self.new_builder().query('pragma table_info(users)').create()
        assert b.tables == []

        b = self.new_builder().execute('update "users" set name = ? where id = ?', ['a', 1]).create()
        assert b.tables == ['users']
        assert b.sql == "update \"users\" set name = 'a' where id = 1"

        b = self.new_builder().query('select * from users where id = :id', {'id': 4}).create()
        assert b.sql == 'select * from users where id = 4'
        assert b.params == {'id': 4}

    def test_StatementBuilder_distinct_values_make_distinct_raw_sql(self):
        first = self.new_builder().query('select * from users where id = ?', 1).create()
        second = self.new_builder().query('select * from users where id = ?', 2).create()
        assert first.prepare == second.prepare
        assert first.sql != second.sql

    def test_StatementBuilder_insert_variants(self):
        b = self.builder.insert({'name': 'a', 'age': 3}).create()
        assert b.prepare == 'insert into "users" ("name","age") values (?,?)'
        assert b.sql == "insert into \"users\" (\"name\",\"age\") values ('a',3)"
        assert b.params == ['a', 3]

        b = self.new_builder().insert_ignore({'name': 'a'}).create()
        assert b.prepare == 'insert or ignore into "users" ("name") values (?)'

        b = self.new_builder().replace({'id': 1, 'name': 'a'}).create()
        assert b.prepare == 'replace into "users" ("id","name") values (?,?)'

    def test_StatementBuilder_inserts_uses_first_row_columns(self):
        b = self.builder.inserts([{'a': 1, 'b': 2}, {'a': 3}]).create()
        assert b.prepare == 'insert into "users" ("a","b") values (?,?),(?,?)'
        assert b.params == [1, 2, 3, None]
        assert b.sql == 'insert into "users" ("a","b") values (1,2),(3,null)'

    def test_StatementBuilder_crease_is_parametrized(self):
        b = self.builder.crease('+', 'score', {'id': 1}, 2).create()
        assert b.sql == 'update "users" set "score" = "score" + 2 where "id" = 1'
        assert b.prepare == 'update "users" set "score" = "score" + ? where "id" = ?'
        assert b.params == [2, 1]

        b = self.new_builder().crease('-', {'a': 1, 'b': 5}, {'id': 1}).create()
        assert b.prepare == 'update "users" set "a" = "a" - ?, "b" = "b" - ? where "id" = ?'
        assert b.params == [1, 5, 1]

    def test_StatementBuilder_update_puts_set_params_before_where_params(self):
        b = self.builder.update({'name': 'x'}, {'id in': [1, 2]}).create()
        assert b.prepare == 'update "users" set "name" = ? where "id" in (?,?)'
        assert b.params == ['x', 1, 2]

    def test_StatementBuilder_exist_wraps_select(self):
        b = self.builder.exist({'id': 1}).create()
        assert b.sql == 'select exists(select * from "users" where "id" = 1) as "cnt"'

    def test_StatementBuilder_group_by_and_having(self):
        b = self.builder.select(['dept_id', 'count(*) as cnt']).group_by('dept_id')
        b.having({'cnt >': 1}).create()
        assert b.prepare == 'select "dept_id",count(*) as cnt from "users" ' + \
            'group by dept_id having "cnt" > ?', b.prepare
        assert b.params == [1]

    def test_StatementBuilder_copy_is_independent(self):
        self.builder.select().join('left', 'depts', 'users.dept_id = depts.id')
        clone = self.builder.copy()
        clone.join('inner', 'teams', 'users.team_id = teams.id')
        assert len(self.builder._joins) == 1
        assert len(clone._joins) == 2


class TestSqliteDialect(unittest.TestCase):
    def setUp(self) -> None:
        self.dialect = dialect.SqliteDialect()
        return super().setUp()

    def test_SqliteDialect_implements_DialectProtocol(self):
        assert isinstance(self.dialect, interfaces.DialectProtocol)

    def test_SqliteDialect_mark_field(self):
        assert self.dialect.mark_field('name') == '"name"'
        assert self.dialect.mark_field('users.name') == '"users"."name"'
        assert self.dialect.mark_field('users.*') == '"users".*'
        assert self.dialect.mark_field('count(*)') == 'count(*)'
        assert self.dialect.mark_field('"name"') == '"name"'

    def test_SqliteDialect_mark_value(self):
        assert self.dialect.mark_value(None) == 'null'
        assert self.dialect.mark_value(True) == '1'
        assert self.dialect.mark_value(3) == '3'
        assert self.dialect.mark_value(1.5) == '1.5'
        assert self.dialect.mark_value("it's") == "'it''s'"
        assert self.dialect.mark_value(b'\xff') == "X'ff'"

    def test_SqliteDialect_where_list_parenthesises_raw_fragments(self):
        where = shapes.where_shape(['a = 1 or b = 2', {'c': 3}])
        sql, prepared, params = self.dialect.render_where(where)
        assert sql == '(a = 1 or b = 2) and "c" = 3'
        assert prepared == '(a = 1 or b = 2) and "c" = ?'
        assert params == [3]

        sql, _, _ = self.dialect.render_where(shapes.where_shape('a = 1 or b = 2'))
        assert sql == 'a = 1 or b = 2'

    def test_SqliteDialect_where_shorthands(self):
        assert self.dialect.render_where(shapes.where_shape(5))[1] == '"id" = ?'
        assert self.dialect.render_where(shapes.where_shape({'x': None}))[0] == '"x" is null'
        assert self.dialect.render_where(
            shapes.where_shape({'x is not': None})
        )[0] == '"x" is not null'
        assert self.dialect.render_where(shapes.where_shape({'x in': []}))[0] == '0 = 1'
        assert self.dialect.render_where(shapes.where_shape({'x not in': []}))[0] == '1 = 1'
        assert self.dialect.render_where(shapes.where_shape({'domain': 'a'}))[1] == '"domain" = ?'

    def test_SqliteDialect_rejects_unrecognized_condition_keys(self):
        with self.assertRaises(ValueError) as e:
            self.dialect.render_where(shapes.where_shape({'a b c': 1}))
        assert str(e.exception) == 'unrecognized condition: a b c'

    def test_SqliteDialect_limit_forms(self):
        assert self.dialect.render_limit(shapes.limit_shape(5)) == ' limit 5'
        assert self.dialect.render_limit(shapes.limit_shape((10, 5))) == ' limit 10,5'
        assert self.dialect.render_limit(None) == ''
        with self.assertRaises(TypeError):
            shapes.limit_shape({'a': 1})

    def test_SqliteDialect_tables_from_query(self):
        assert self.dialect.tables_from_query('select * from "users" where 1') == ['users']
        assert self.dialect.tables_from_query(
            'select * from (select id from users) as x'
        ) == ['users']
        assert self.dialect.tables_from_query('select 1') == []
        assert self.dialect.tables_from_execute(
            'insert into main.users (id) values (1)'
        ) == ['users']
        assert self.dialect.tables_from_execute(
            'drop table if exists users'
        ) == ['users']

    def test_SqliteDialect_parse_foreign_keys(self):
        sql = 'create table users (id integer primary key, ' + \
            'dept_id integer references depts(id), team_id integer, ' + \
            'foreign key (team_id) references teams (id))'
        keys = self.dialect.parse_foreign_keys(sql)
        assert keys == {
            'team_id': {'table': 'teams', 'column': 'id'},
            'dept_id': {'table': 'depts', 'column': 'id'},
        }, keys

    def test_SqliteDialect_parse_describe(self):
        columns = self.dialect.parse_describe([
            {'cid': 0, 'name': 'id', 'type': 'INTEGER', 'notnull': 0, 'dflt_value': None, 'pk': 1},
            {'cid': 1, 'name': 'name', 'type': 'varchar(20)', 'notnull': 1, 'dflt_value': "''", 'pk': 0},
        ])
        assert columns['id']['auto_increment']
        assert columns['id']['primary_key']
        assert columns['name']['type'] == 'varchar'
        assert columns['name']['max_length'] == 20
        assert columns['name']['not_null']
        assert columns['name']['has_default']


class TestShapes(unittest.TestCase):
    def test_shapes_normalize_loose_input(self):
        assert shapes.fields_shape(None) is None
        assert shapes.fields_shape('') is None
        assert shapes.fields_shape('id') == shapes.FromRaw('id')
        assert shapes.fields_shape(['a', 'b']) == shapes.FromList(('a', 'b'))
        assert shapes.where_shape({'a': 1}) == shapes.FromMap((('a', 1),))
        assert shapes.where_shape({}) is None
        raw = shapes.FromRaw('x')
        assert shapes.order_shape(raw) is raw

    def test_shapes_reject_other_types(self):
        with self.assertRaises(TypeError) as e:
            shapes.fields_shape(3.5)
        assert str(e.exception) == 'fields must be str, list, tuple, or dict'


if __name__ == '__main__':
    unittest.main()
