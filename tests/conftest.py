import bcrypt
import mongomock
import pytest
from flask_jwt_extended import create_access_token
from pymongo.errors import PyMongoError

from catalog_admin.app import create_app

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "correct-horse-battery"


class UnavailableCollection:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise PyMongoError("database unavailable")

        return fail


class PartiallyAvailableDatabase:
    """mongomock database where the named collections raise on every call."""

    def __init__(self, db, unavailable):
        self._db = db
        self._unavailable = set(unavailable)

    def __getitem__(self, name):
        if name in self._unavailable:
            return UnavailableCollection()
        return self._db[name]

    def __getattr__(self, name):
        return self[name]


class RecordingStore:
    def __init__(self):
        self.added = []
        self.updated = []
        self.deleted = []

    def add_document(self, collection, document):
        self.added.append((collection, document))
        return f"{collection}-{len(self.added)}"

    def ensure_named_document(self, collection, name):
        self.added.append((collection, {"name": name}))
        return True

    def update_document(self, collection, document_id, changes):
        self.updated.append((collection, document_id, changes))
        return True

    def delete_document(self, collection, document_id):
        self.deleted.append((collection, document_id))
        return True


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def make_app(db, tmp_path):
    def build(database=None, **overrides):
        config = {
            "TESTING": True,
            "ADMIN_EMAIL": ADMIN_EMAIL,
            "ADMIN_PASSWORD": ADMIN_PASSWORD,
            "JWT_SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        }
        config.update(overrides)
        return create_app(config, database=database if database is not None else db)

    return build


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    def build(email=ADMIN_EMAIL):
        with app.app_context():
            token = create_access_token(identity=email)
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def admin_headers(auth_headers):
    return auth_headers()


@pytest.fixture
def create_user(db):
    def build(email, password, name=""):
        db.users.insert_one(
            {
                "email": email,
                "name": name,
                "password": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()),
            }
        )

    return build
