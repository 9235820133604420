from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from database import create_document

NOW = datetime(2024, 12, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def db():
    return mongomock.MongoClient().storefront


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def customer():
    from schemas import CustomerInfo

    return CustomerInfo(first_name="Ana", last_name="Lopez", email="ana@example.com", phone="940-555-0101")


def add_vehicle(db, name="Toyota Camry", category="economy", price=500, status="available", created_at=None):
    data = {
        "name": name,
        "category": category,
        "price": price,
        "price_unit": "month",
        "image": "https://images.example.com/camry.jpg",
        "features": ["Bluetooth", "Backup camera"],
        "specifications": {"seats": 5, "transmission": "automatic", "fuel_type": "gasoline",
                           "year": 2022, "brand": "Toyota", "model": "Camry"},
        "status": status,
    }
    if created_at is not None:
        data["created_at"] = created_at
    return create_document(db, "vehicles", data)


class FakeGridOut:
    def __init__(self, file_id, filename, data, metadata):
        self._id = file_id
        self.filename = filename
        self.data = data
        self.metadata = metadata

    def read(self):
        return self.data

    def __iter__(self):
        yield self.data


class FakeBucket:
    """Stands in for GridFSBucket, which mongomock cannot back."""

    def __init__(self):
        self.files = []
        self.next_id = 1
        self.fail_with = None

    def upload_from_stream(self, filename, source, metadata=None):
        if self.fail_with:
            raise self.fail_with
        data = source if isinstance(source, bytes) else source.read()
        self.files.append(FakeGridOut(self.next_id, filename, data, metadata))
        self.next_id += 1

    def find(self, filter=None, limit=0, sort=None):
        if self.fail_with:
            raise self.fail_with
        name = (filter or {}).get("filename")
        files = [f for f in self.files if name is None or f.filename == name]
        if sort:
            files = list(reversed(files))
        return files[:limit] if limit else files

    def open_download_stream_by_name(self, name):
        from gridfs.errors import NoFile

        for f in reversed(self.files):
            if f.filename == name:
                return f
        raise NoFile(f"no file named {name}")

    def delete(self, file_id):
        if self.fail_with:
            raise self.fail_with
        self.files = [f for f in self.files if f._id != file_id]
