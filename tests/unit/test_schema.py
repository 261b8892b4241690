"""
Unit tests for table descriptors.

Tests cover:
- Identifier validation
- Column type parsing
- Descriptor construction and introspection
- SQL rendering
"""

import pytest

from dbaas.chaindb_server.db.schema import (
    ColumnType,
    TableDescriptor,
    quote,
    validate_identifier,
)
from dbaas.chaindb_server.errors import InvalidColumnTypeError, InvalidIdentifierError


class TestIdentifiers:
    """Tests for identifier validation."""

    @pytest.mark.parametrize("name", ["Person", "_private", "col_2"])
    def test_valid_identifiers(self, name):
        """Plain identifiers pass through unchanged."""
        assert validate_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "2fast", "drop table", 'x"y', "sqlite_master", 5])
    def test_invalid_identifiers(self, name):
        """Anything else is rejected."""
        with pytest.raises(InvalidIdentifierError):
            validate_identifier(name)

    def test_quote(self):
        assert quote("Person") == '"Person"'


class TestColumnType:
    """Tests for ColumnType.parse and ColumnType.from_affinity."""

    @pytest.mark.parametrize(
        "declared,expected",
        [
            ("text", ColumnType.TEXT),
            ("TEXT", ColumnType.TEXT),
            ("number", ColumnType.NUMBER),
            ("num", ColumnType.NUMBER),
            (ColumnType.TEXT, ColumnType.TEXT),
        ],
    )
    def test_parse(self, declared, expected):
        assert ColumnType.parse(declared) is expected

    @pytest.mark.parametrize(
        "declared", ["", "banana", "blob", "VARCHAR(20)", "INTEGER", 5, None, ["text"]]
    )
    def test_parse_rejects_other_types(self, declared):
        """Only text, number and num are valid declarations."""
        with pytest.raises(InvalidColumnTypeError) as exc_info:
            ColumnType.parse(declared, "age")

        assert exc_info.value.code == "INVALID_COLUMN_TYPE"
        assert exc_info.value.details["column"] == "age"

    @pytest.mark.parametrize(
        "declared,expected",
        [
            ("text", ColumnType.TEXT),
            ("VARCHAR(20)", ColumnType.TEXT),
            ("number", ColumnType.NUMBER),
            ("INTEGER", ColumnType.NUMBER),
            ("", ColumnType.NUMBER),
        ],
    )
    def test_from_affinity(self, declared, expected):
        """Introspected types follow SQLite affinity rules."""
        assert ColumnType.from_affinity(declared) is expected


class TestTableDescriptor:
    """Tests for TableDescriptor."""

    @pytest.fixture
    def person(self):
        return TableDescriptor.build("Person", {"nickname": "text", "age": "num"})

    def test_build_keeps_column_order(self, person):
        assert person.column_names == ("nickname", "age")
        assert person.columns["age"].type is ColumnType.NUMBER

    def test_build_accepts_type_dicts(self):
        """The {"type": ...} column shape is accepted."""
        descriptor = TableDescriptor.build("Thing", {"label": {"type": "text"}})
        assert descriptor.columns["label"].type is ColumnType.TEXT

    def test_id_column_rejected(self):
        with pytest.raises(InvalidIdentifierError):
            TableDescriptor.build("Person", {"id": "number"})

    def test_empty_columns_rejected(self):
        with pytest.raises(InvalidIdentifierError):
            TableDescriptor.build("Person", {})

    @pytest.mark.parametrize("declared", ["banana", "blob", 5, {"type": "date"}, {}])
    def test_invalid_column_type_rejected(self, declared):
        with pytest.raises(InvalidColumnTypeError):
            TableDescriptor.build("Person", {"nickname": "text", "age": declared})

    def test_columns_are_immutable(self, person):
        with pytest.raises(TypeError):
            person.columns["extra"] = None

    def test_collection_name(self, person):
        assert person.collection == "Persons"

    def test_filter_fields_drops_unknown_and_id(self, person):
        fields = {"id": 7, "age": 42, "shoe_size": 44, "nickname": "Joe"}
        assert person.filter_fields(fields) == {"nickname": "Joe", "age": 42}

    def test_from_table_info(self):
        """Descriptors are rebuilt from PRAGMA table_info rows, id skipped."""
        rows = [
            {"cid": 0, "name": "id", "type": "INTEGER"},
            {"cid": 1, "name": "nickname", "type": "text"},
            {"cid": 2, "name": "age", "type": "number"},
            {"cid": 3, "name": "label", "type": "VARCHAR(20)"},
        ]
        descriptor = TableDescriptor.from_table_info("Person", rows)
        assert descriptor.column_names == ("nickname", "age", "label")
        assert descriptor.columns["nickname"].type is ColumnType.TEXT
        assert descriptor.columns["label"].type is ColumnType.TEXT

    def test_to_dict(self, person):
        assert person.to_dict() == {
            "name": "Person",
            "columns": {
                "nickname": {"name": "nickname", "type": "text"},
                "age": {"name": "age", "type": "number"},
            },
        }


class TestSqlRendering:
    """Tests for rendered SQL statements."""

    @pytest.fixture
    def person(self):
        return TableDescriptor.build("Person", {"nickname": "text", "age": "number"})

    def test_create_sql(self, person):
        assert person.create_sql() == (
            'create table "Person" ("id" integer primary key asc, '
            '"nickname" text, "age" number)'
        )

    def test_insert_sql_binds_values(self, person):
        sql, params = person.insert_sql({"age": 42})
        assert sql == 'insert into "Person" ("age") values (?)'
        assert params == [42]

    def test_insert_sql_without_fields(self, person):
        sql, params = person.insert_sql({})
        assert sql == 'insert into "Person" default values'
        assert params == []

    def test_update_sql_writes_every_column(self, person):
        sql, params = person.update_sql({"id": 3, "age": 43})
        assert sql == 'update "Person" set "nickname" = ?, "age" = ? where id = ?'
        assert params == [None, 43, 3]
