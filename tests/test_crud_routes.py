import os
import unittest
from datetime import timedelta
from uuid import uuid4

from fastapi.testclient import TestClient
from pydantic import BaseModel, Field
from sqlalchemy import Integer, String, create_engine, delete
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure settings can be initialized in test environments
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from elepy.core.config import settings
from elepy.core.security import create_jwt
from elepy.db.session import get_db
from elepy.main import create_app
from elepy.schemas.model import Property, PropertyType, Schema
from elepy.services.describers import describe_model
from elepy.services.registry import ModelRegistry

RESOURCE_SCHEMA = Schema(
    name="Resource",
    slug="resources",
    properties=(
        Property(name="id", type=PropertyType.NUMBER),
        Property(name="unique", type=PropertyType.STRING, searchable=True, unique=True),
        Property(name="numberMax40", type=PropertyType.NUMBER),
        Property(name="textField", type=PropertyType.STRING, searchable=True),
        Property(name="secret", type=PropertyType.STRING, hidden=True),
    ),
)


class ResourceIn(BaseModel):
    unique: str | None = None
    numberMax40: int | None = Field(default=None, le=40)


class _NotesBase(DeclarativeBase):
    pass


class _Note(_NotesBase):
    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    body: Mapped[str | None] = mapped_column(String(500), nullable=True)


def _auth_headers(*permissions: str) -> dict[str, str]:
    token = create_jwt(
        {"sub": str(uuid4()), "username": "tester", "permissions": list(permissions)},
        settings.JWT_SECRET,
        timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}


class CrudRoutesTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        _Note.__table__.create(bind=cls.engine)

    @classmethod
    def tearDownClass(cls):
        _Note.__table__.drop(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self):
        with self.SessionLocal() as db:
            db.execute(delete(_Note))
            db.commit()

        registry = ModelRegistry()
        registry.register(RESOURCE_SCHEMA, input_model=ResourceIn)
        registry.register(describe_model(_Note, slug="notes"), model=_Note)
        self.app = create_app(registry)

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        self.app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(self.app)
        self.headers = _auth_headers("admin")

    def tearDown(self):
        self.client.close()
        self.app.dependency_overrides.clear()

    def _seed(self):
        response = self.client.post(
            "/resources",
            headers=self.headers,
            json=[
                {"unique": "filterUnique", "numberMax40": 25, "textField": "one"},
                {"unique": "other", "numberMax40": 25, "textField": "two"},
                {"unique": "third", "numberMax40": 5, "textField": "three"},
                {"unique": "fourth", "numberMax40": 30, "textField": "four", "secret": "hush"},
            ],
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_can_find_items(self):
        self._seed()
        response = self.client.get("/resources")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["totalCount"], 4)
        self.assertEqual(body["pageNumber"], 1)
        self.assertEqual(body["pageSize"], 2**31 - 1)
        self.assertEqual([row["id"] for row in body["values"]], [1, 2, 3, 4])
        self.assertTrue(all("secret" not in row for row in body["values"]))

    def test_can_filter_and_search_items(self):
        self._seed()
        response = self.client.get(
            "/resources?id_equals=4&unique_contains=filter&numberMax40_equals=25&q=ilterUni"
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["totalCount"], 1)
        self.assertEqual(body["values"][0]["unique"], "filterUnique")

    def test_can_search_sort_and_page(self):
        self._seed()
        searched = self.client.get("/resources", params={"q": "two"}).json()
        self.assertEqual([row["id"] for row in searched["values"]], [2])

        paged = self.client.get(
            "/resources",
            params=[("sort", "numberMax40,DESC"), ("sort", "id,DESC"), ("pageSize", "2"), ("pageNumber", "1")],
        ).json()
        self.assertEqual([row["id"] for row in paged["values"]], [4, 2])
        self.assertEqual(paged["totalCount"], 4)

    def test_bad_query_parameters_return_400(self):
        for query in ("numberMax40_contains=2", "pageSize=abc", "pageNumber=0", "sort=secret", "nope_equals=1"):
            response = self.client.get(f"/resources?{query}")
            self.assertEqual(response.status_code, 400, query)
        self.assertEqual(self.client.get("/resources?unique_bogus=1").status_code, 200)

    def test_can_find_one(self):
        self._seed()
        found = self.client.get("/resources/4")
        self.assertEqual(found.status_code, 200)
        self.assertEqual(found.json()["unique"], "fourth")
        self.assertNotIn("secret", found.json())
        self.assertEqual(self.client.get("/resources/99").status_code, 404)
        self.assertEqual(self.client.get("/resources/abc").status_code, 400)

    def test_can_create_item(self):
        response = self.client.post("/resources", headers=self.headers, json={"unique": "solo", "secret": "x"})
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["id"], 1)
        self.assertEqual(body["unique"], "solo")
        self.assertNotIn("secret", body)

    def test_multi_create_is_atomic(self):
        duplicated = self.client.post(
            "/resources", headers=self.headers, json=[{"unique": "same"}, {"unique": "same"}]
        )
        self.assertEqual(duplicated.status_code, 400)
        self.assertEqual(self.client.get("/resources").json()["totalCount"], 0)

        self.client.post("/resources", headers=self.headers, json={"unique": "taken"})
        clashing = self.client.post(
            "/resources", headers=self.headers, json=[{"unique": "fresh"}, {"unique": "taken"}]
        )
        self.assertEqual(clashing.status_code, 400)
        self.assertIn("already exists", clashing.json()["detail"])
        self.assertEqual(self.client.get("/resources").json()["totalCount"], 1)

    def test_create_validates_payload(self):
        unknown = self.client.post("/resources", headers=self.headers, json={"unique": "x", "bogus": 1})
        self.assertEqual(unknown.status_code, 400)
        self.assertEqual(unknown.json()["detail"], "Unknown fields: bogus")

        too_big = self.client.post("/resources", headers=self.headers, json={"unique": "x", "numberMax40": 41})
        self.assertEqual(too_big.status_code, 400)
        self.assertIn("numberMax40", too_big.json()["detail"])

        empty = self.client.post("/resources", headers=self.headers, json=[])
        self.assertEqual(empty.status_code, 400)

    def test_partial_update_keeps_other_fields(self):
        self.client.post(
            "/resources", headers=self.headers, json={"unique": "x", "numberMax40": 5, "textField": "keep"}
        )
        patched = self.client.patch("/resources/1", headers=self.headers, json={"numberMax40": 6})
        self.assertEqual(patched.status_code, 200)
        self.assertEqual(patched.json()["numberMax40"], 6)
        self.assertEqual(patched.json()["textField"], "keep")

    def test_put_replaces_visible_fields(self):
        self.client.post(
            "/resources", headers=self.headers, json={"unique": "x", "numberMax40": 5, "textField": "gone", "secret": "s"}
        )
        replaced = self.client.put("/resources/1", headers=self.headers, json={"unique": "y"})
        self.assertEqual(replaced.status_code, 200)
        body = replaced.json()
        self.assertEqual(body["unique"], "y")
        self.assertIsNone(body["numberMax40"])
        self.assertIsNone(body["textField"])

    def test_update_rejects_conflicts(self):
        self.client.post("/resources", headers=self.headers, json=[{"unique": "a"}, {"unique": "b"}])
        mismatch = self.client.patch("/resources/1", headers=self.headers, json={"id": 2, "unique": "c"})
        self.assertEqual(mismatch.status_code, 400)
        clash = self.client.patch("/resources/1", headers=self.headers, json={"unique": "b"})
        self.assertEqual(clash.status_code, 400)
        same = self.client.patch("/resources/1", headers=self.headers, json={"unique": "a", "textField": "t"})
        self.assertEqual(same.status_code, 200)
        missing = self.client.patch("/resources/9", headers=self.headers, json={"unique": "z"})
        self.assertEqual(missing.status_code, 404)

    def test_can_delete_item(self):
        self._seed()
        deleted = self.client.delete("/resources/1", headers=self.headers)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.json(), {"status": "deleted", "id": "1"})
        self.assertEqual(self.client.get("/resources/1").status_code, 404)
        self.assertEqual(self.client.delete("/resources/1", headers=self.headers).status_code, 404)
        self.assertEqual(self.client.get("/resources").json()["totalCount"], 3)

    def test_writes_require_login(self):
        self.assertEqual(self.client.post("/resources", json={"unique": "x"}).status_code, 401)
        self.assertEqual(self.client.patch("/resources/1", json={"unique": "x"}).status_code, 401)
        self.assertEqual(self.client.delete("/resources/1").status_code, 401)

    def test_meta_lists_models_without_hidden_properties(self):
        response = self.client.get("/meta/models")
        self.assertEqual(response.status_code, 200)
        by_slug = {model["slug"]: model for model in response.json()["models"]}
        self.assertEqual(set(by_slug), {"resources", "notes"})

        resource = by_slug["resources"]
        self.assertEqual(resource["idField"], "id")
        self.assertEqual(resource["defaultSortField"], "id")
        names = [prop["name"] for prop in resource["properties"]]
        self.assertEqual(names, ["id", "unique", "numberMax40", "textField"])
        number_tokens = {ft["token"] for ft in resource["filterTypes"]["numberMax40"]}
        self.assertIn("gt", number_tokens)
        self.assertNotIn("contains", number_tokens)

        self.assertEqual(self.client.get("/meta/models/notes").json()["name"], "_Note")
        self.assertEqual(self.client.get("/meta/models/nope").status_code, 404)

    def test_sql_backed_model_round_trip(self):
        created = self.client.post(
            "/notes", headers=self.headers, json=[{"title": "First note", "body": "alpha"}, {"title": "Second"}]
        )
        self.assertEqual(created.status_code, 201, created.text)
        ids = [row["id"] for row in created.json()]

        listed = self.client.get("/notes", params={"q": "first"}).json()
        self.assertEqual([row["id"] for row in listed["values"]], [ids[0]])

        duplicate = self.client.post("/notes", headers=self.headers, json={"title": "Second"})
        self.assertEqual(duplicate.status_code, 400)

        missing_title = self.client.post("/notes", headers=self.headers, json={"body": "no title"})
        self.assertEqual(missing_title.status_code, 400)
        self.assertIn("title", missing_title.json()["detail"])

        patched = self.client.patch(f"/notes/{ids[1]}", headers=self.headers, json={"body": "beta"})
        self.assertEqual(patched.json()["body"], "beta")
        self.assertEqual(patched.json()["title"], "Second")

        deleted = self.client.delete(f"/notes/{ids[0]}", headers=self.headers)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.get("/notes").json()["totalCount"], 1)

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})
