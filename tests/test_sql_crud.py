import unittest
from datetime import datetime

from fastapi import HTTPException
from sqlalchemy import JSON, DateTime, Integer, String, create_engine, delete
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from elepy.dao.sql import SqlCrud, escape_like
from elepy.schemas.model import PropertyType
from elepy.services.describers import describe_model
from elepy.services.query_parser import parse_query


class _Base(DeclarativeBase):
    pass


class _Resource(_Base):
    __tablename__ = "resources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unique: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    number_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    text_field: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    secret: Mapped[str | None] = mapped_column(String(50), nullable=True)


SCHEMA = describe_model(_Resource, searchable=("unique", "text_field"), hidden=("secret",))


def _ids(page) -> list:
    return [row["id"] for row in page.values]


class DescribeModelTests(unittest.TestCase):
    def test_schema_is_derived_from_the_mapper(self):
        self.assertEqual(SCHEMA.name, "_Resource")
        self.assertEqual(SCHEMA.slug, "resources")
        self.assertEqual(SCHEMA.id_field, "id")
        self.assertEqual(SCHEMA.default_sort_field, "id")
        self.assertEqual(SCHEMA.get_property("number_max").type, PropertyType.NUMBER)
        self.assertEqual(SCHEMA.get_property("created").type, PropertyType.DATETIME)
        self.assertEqual(SCHEMA.get_property("tags").type, PropertyType.COLLECTION)
        self.assertFalse(SCHEMA.get_property("tags").sortable)

    def test_flags(self):
        self.assertTrue(SCHEMA.get_property("unique").unique)
        self.assertTrue(SCHEMA.get_property("unique").required)
        self.assertFalse(SCHEMA.get_property("text_field").required)
        self.assertEqual([p.name for p in SCHEMA.searchable_properties], ["unique", "text_field"])
        self.assertEqual(SCHEMA.hidden_fields, {"secret"})
        self.assertEqual(SCHEMA.get_property("number_max").label, "Number max")

    def test_default_searchable_columns_are_strings(self):
        schema = describe_model(_Resource)
        self.assertEqual(
            [p.name for p in schema.searchable_properties],
            ["unique", "text_field", "secret"],
        )


class SqlCrudTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        _Base.metadata.create_all(bind=cls.engine)

    @classmethod
    def tearDownClass(cls):
        _Base.metadata.drop_all(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self):
        with self.SessionLocal() as db:
            db.execute(delete(_Resource))
            db.add_all(
                [
                    _Resource(id=1, unique="filterUnique", number_max=25, text_field="one",
                              created=datetime(2024, 5, 1, 10, 0), tags=["a"]),
                    _Resource(id=2, unique="other", number_max=25, text_field="two",
                              created=datetime(2024, 5, 2, 9, 30)),
                    _Resource(id=3, unique="third_100%", number_max=5, text_field="three"),
                    _Resource(id=4, unique="fourth", number_max=None, text_field="Four", secret="s"),
                ]
            )
            db.commit()
        self.db = self.SessionLocal()
        self.crud = SqlCrud(_Resource, SCHEMA, self.db)

    def tearDown(self):
        self.db.close()

    def _find(self, params: dict):
        return self.crud.find(parse_query(params, SCHEMA))

    def test_filter_union_is_intersected_with_search(self):
        page = self._find({"id_equals": "4", "unique_contains": "filter", "number_max_equals": "25", "q": "ilterUni"})
        self.assertEqual(_ids(page), [1])
        self.assertEqual(page.total_count, 1)

    def test_record_matching_one_of_two_filters_is_returned(self):
        self.assertEqual(_ids(self._find({"id_equals": "4", "number_max_equals": "5"})), [3, 4])

    def test_search_is_case_insensitive_over_searchable_columns(self):
        self.assertEqual(_ids(self._find({"q": "FOUR"})), [4])
        self.assertEqual(_ids(self._find({"q": "one OR two"})), [1, 2])

    def test_like_metacharacters_are_literal(self):
        self.assertEqual(_ids(self._find({"unique_contains": "100%"})), [3])
        self.assertEqual(_ids(self._find({"unique_contains": "d_1"})), [3])
        self.assertEqual(escape_like("a_b%c"), "a\\_b\\%c")

    def test_comparisons_lists_and_nulls(self):
        self.assertEqual(_ids(self._find({"number_max_gt": "5"})), [1, 2])
        self.assertEqual(_ids(self._find({"id_notIn": "2,3"})), [1, 4])
        self.assertEqual(_ids(self._find({"number_max_isNull": ""})), [4])
        self.assertEqual(_ids(self._find({"number_max_notEquals": "25"})), [3])
        self.assertEqual(_ids(self._find({"text_field_startsWith": "T"})), [2, 3])

    def test_datetime_equals_date_covers_the_whole_day(self):
        self.assertEqual(_ids(self._find({"created_equals": "2024-05-01"})), [1])
        self.assertEqual(_ids(self._find({"created_notEquals": "2024-05-01"})), [2])

    def test_datetime_in_with_dates_covers_whole_days(self):
        self.assertEqual(_ids(self._find({"created_in": "2024-05-01"})), [1])
        self.assertEqual(_ids(self._find({"created_in": "2024-05-01,2024-05-02"})), [1, 2])
        self.assertEqual(_ids(self._find({"created_notIn": "2024-05-01"})), [2])

    def test_page_far_past_the_end_is_empty(self):
        page = self._find({"pageNumber": str(10**19), "pageSize": "10"})
        self.assertEqual(page.values, [])
        self.assertEqual(page.total_count, 4)

    def test_sort_with_nulls_last_and_paging(self):
        self.assertEqual(_ids(self._find({"sort": ["number_max,DESC", "id"]})), [1, 2, 3, 4])
        self.assertEqual(_ids(self._find({"sort": ["number_max", "id,DESC"]})), [3, 2, 1, 4])
        page = self._find({"sort": "id,DESC", "pageSize": "3", "pageNumber": "2"})
        self.assertEqual(_ids(page), [1])
        self.assertEqual(page.total_count, 4)
        self.assertEqual(self._find({"pageNumber": "2"}).values, [])

    def test_rows_are_serialized(self):
        row = self.crud.get_by_id("1")
        self.assertEqual(row["created"], "2024-05-01T10:00:00")
        self.assertEqual(row["tags"], ["a"])
        self.assertIsNone(self.crud.get_by_id(99))

    def test_create_update_delete(self):
        created = self.crud.create([{"unique": "new", "number_max": "7"}])
        new_id = created[0]["id"]
        self.assertEqual(created[0]["number_max"], 7)
        self.assertEqual(self.crud.count(), 5)

        updated = self.crud.update(str(new_id), {"text_field": "fresh", "id": 1000})
        self.assertEqual(updated["id"], new_id)
        self.assertEqual(updated["text_field"], "fresh")
        self.assertEqual(updated["number_max"], 7)

        self.crud.delete(str(new_id))
        self.assertFalse(self.crud.exists(new_id))
        with self.assertRaises(HTTPException) as ctx:
            self.crud.delete(str(new_id))
        self.assertEqual(ctx.exception.status_code, 404)

    def test_integrity_error_rolls_back_the_batch(self):
        with self.assertRaises(HTTPException) as ctx:
            self.crud.create([{"unique": "fresh"}, {"unique": "other"}])
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(self.crud.count(), 4)
        self.assertEqual(_ids(self._find({"unique_equals": "fresh"})), [])

    def test_malformed_id_raises_400(self):
        with self.assertRaises(HTTPException) as ctx:
            self.crud.get_by_id("abc")
        self.assertEqual(ctx.exception.status_code, 400)
