"""
Shared pytest fixtures for bucketkeeper tests.

This module provides fixtures for:
- Flask app, test client and CLI runner
- Cluster directory fixtures
- Mocked S3 (moto) and S3 credentials
- A fake Google Cloud Storage client
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import boto3
from google.api_core.exceptions import NotFound
from moto import mock_aws

from bucketkeeper import create_app
from bucketkeeper.directory import ClusterDirectory


S3_CREDENTIALS = {
    'access_key_id': 'testing',
    'secret_access_key': 'testing',
    'region': 'us-east-1',
}


@pytest.fixture
def cluster_data():
    """
    Cluster config with two installations on one S3 filesource.

    inst-a uses a dedicated bucket, inst-b writes to the shared bucket.
    """
    return {
        'installations': {
            'inst-a': {'filesource': 'primary'},
            'inst-b': {'filesource': 'primary'},
        },
        'filesource': {
            'primary': {
                'provider': 'amazon',
                'product': 's3',
                'credentials': dict(S3_CREDENTIALS),
                'installations': {
                    'inst-b': {'bucket': 'shared-backups', 'version': 2},
                },
            },
        },
    }


@pytest.fixture
def directory(cluster_data):
    return ClusterDirectory(data=cluster_data)


@pytest.fixture
def dispatcher():
    """MagicMock standing in for ConnectorDispatcher."""
    return MagicMock()


@pytest.fixture(scope='function')
def app(dispatcher, directory):
    """Create Flask app with test configuration."""
    app = create_app('testing', dispatcher=dispatcher, directory=directory)
    yield app


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def s3_credentials():
    return dict(S3_CREDENTIALS)


@pytest.fixture
def aws_env(monkeypatch):
    """Keep boto3 away from real AWS credentials."""
    for name in ('AWS_ACCESS_KEY_ID', 'AWS_SECRET_ACCESS_KEY', 'AWS_SECURITY_TOKEN', 'AWS_SESSION_TOKEN'):
        monkeypatch.setenv(name, 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3(aws_env):
    """
    Mock AWS S3 service using moto.

    Yields a low-level client; tests create the buckets they need.
    """
    with mock_aws():
        yield boto3.client('s3', region_name='us-east-1')


def create_versioned_bucket(s3_client, name):
    s3_client.create_bucket(Bucket=name)
    s3_client.put_bucket_versioning(Bucket=name, VersioningConfiguration={'Status': 'Enabled'})


class FakeBlob:
    """Stored generation of a fake GCS object."""

    def __init__(self, name, generation, size=0, data=b''):
        self.name = name
        self.generation = generation
        self.size = size
        self.data = data


class FakePage(list):
    def __init__(self, blobs, prefixes=()):
        super().__init__(blobs)
        self.prefixes = set(prefixes)


class FakeBlobHandle:
    def __init__(self, client, bucket, name, generation=None):
        self.client = client
        self.bucket = bucket
        self.name = name
        self.generation = generation

    def delete(self):
        blobs = self.client.buckets[self.bucket]
        match = [b for b in blobs if b.name == self.name and b.generation == self.generation]
        if not match:
            raise NotFound(f"{self.bucket}/{self.name}#{self.generation}")
        blobs.remove(match[0])
        self.client.deleted.append((self.bucket, self.name, self.generation))

    def download_as_bytes(self):
        blobs = [b for b in self.client.buckets.get(self.bucket, []) if b.name == self.name]
        if not blobs:
            raise NotFound(f"{self.bucket}/{self.name}")
        return max(blobs, key=lambda b: b.generation).data


class FakeBucket:
    def __init__(self, client, name):
        self.client = client
        self.name = name
        self.versioning_enabled = False
        self.labels = {}

    def blob(self, name, generation=None):
        return FakeBlobHandle(self.client, self.name, name, generation)

    def exists(self):
        return self.name in self.client.buckets

    def delete(self):
        if self.name not in self.client.buckets:
            raise NotFound(self.name)
        del self.client.buckets[self.name]
        self.client.deleted_buckets.append(self.name)

    def copy_blob(self, blob, destination_bucket, new_name=None, source_generation=None):
        self.client.copies.append(
            (self.name, blob.name, source_generation, destination_bucket.name, new_name)
        )
        sources = [
            b for b in self.client.buckets.get(self.name, [])
            if b.name == blob.name and b.generation == source_generation
        ]
        if not sources:
            raise NotFound(f"{self.name}/{blob.name}#{source_generation}")
        target = self.client.buckets.setdefault(destination_bucket.name, [])
        target.append(FakeBlob(new_name, self.client.next_generation(), sources[0].size, sources[0].data))

    def patch(self):
        self.client.patched.append(self)


class FakeGCSClient:
    """
    In-memory stand-in for google.cloud.storage.Client.

    list_blobs splits results into pages of `page_size` blobs so paging
    is exercised the same way as against the real API.
    """

    def __init__(self, buckets=None, page_size=2):
        self.buckets = {name: list(blobs) for name, blobs in (buckets or {}).items()}
        self.page_size = page_size
        self.deleted = []
        self.deleted_buckets = []
        self.copies = []
        self.patched = []
        self._generation = 1000

    def next_generation(self):
        self._generation += 1
        return self._generation

    def bucket(self, name):
        return FakeBucket(self, name)

    def get_bucket(self, name):
        if name not in self.buckets:
            raise NotFound(name)
        return FakeBucket(self, name)

    def list_blobs(self, bucket, prefix='', versions=False, delimiter=None, page_size=None):
        if bucket not in self.buckets:
            raise NotFound(f"bucket {bucket}")

        blobs = sorted(
            (b for b in self.buckets[bucket] if b.name.startswith(prefix)),
            key=lambda b: (b.name, b.generation),
        )
        prefixes = set()
        if delimiter:
            direct = []
            for blob in blobs:
                rest = blob.name[len(prefix):]
                if delimiter in rest:
                    prefixes.add(prefix + rest.split(delimiter)[0] + delimiter)
                else:
                    direct.append(blob)
            blobs = direct

        size = page_size or self.page_size
        pages = [FakePage(blobs[i:i + size]) for i in range(0, len(blobs), size)] or [FakePage([])]
        pages[0].prefixes = prefixes
        return SimpleNamespace(pages=iter(pages))


@pytest.fixture
def versioned_bucket(mock_s3):
    """Factory creating versioned buckets inside the moto mock."""
    def create(name):
        create_versioned_bucket(mock_s3, name)
        return name
    return create


@pytest.fixture
def gcs():
    """Fake GCS building blocks: gcs.client(buckets, page_size) and gcs.blob(name, generation)."""
    return SimpleNamespace(client=FakeGCSClient, blob=FakeBlob)
