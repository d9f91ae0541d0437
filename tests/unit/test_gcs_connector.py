"""
Unit tests for the Google Cloud Storage connector (bucketkeeper/storage/gcs.py).

Uses the in-memory FakeGCSClient from conftest.
"""

from unittest.mock import MagicMock, patch

import pytest
from google.api_core.exceptions import Forbidden, ServiceUnavailable

from bucketkeeper.errors import AggregateBatchError, NotFoundError, ProviderError
from bucketkeeper.storage.gcs import GCSConnector


GCS_CREDENTIALS = {'project_id': 'test-project'}
SHARED_CREDENTIALS = dict(GCS_CREDENTIALS, bucket='shared-backups', version=2)


def connector_for(client, **kwargs):
    return GCSConnector(client_factory=lambda creds: client, delete_concurrency=3, **kwargs)


class TestGCSListing:
    """Test list_file_versions and list_backups."""

    @pytest.mark.parametrize('page_size', [1, 2, 3, 100])
    def test_list_file_versions_reads_every_page(self, gcs, page_size):
        client = gcs.client({'inst-a': [
            gcs.blob('public/a.txt', 1, size=10),
            gcs.blob('public/a.txt', 2, size=11),
            gcs.blob('public/b.txt', 5, size=3),
            gcs.blob('private/c.txt', 7),
        ]}, page_size=page_size)

        files = connector_for(client).list_file_versions('inst-a', 'public/', GCS_CREDENTIALS)

        assert sorted((v.path, v.version_id) for v in files.versions) == [
            ('public/a.txt', '1'), ('public/a.txt', '2'), ('public/b.txt', '5'),
        ]
        assert files.delete_markers == []
        assert all(v.is_latest is None for v in files.versions)

    def test_connector_page_size_is_passed_to_listing(self, gcs):
        client = gcs.client({'inst-a': [gcs.blob('a', 1)]})
        client.list_blobs = MagicMock(wraps=client.list_blobs)

        connector_for(client, page_size=50).list_file_versions('inst-a', '', GCS_CREDENTIALS)

        client.list_blobs.assert_called_once_with('inst-a', prefix='', versions=True, page_size=50)

    def test_missing_bucket(self, gcs):
        with pytest.raises(NotFoundError, match="inst-a"):
            connector_for(gcs.client()).list_file_versions('inst-a', '', GCS_CREDENTIALS)

    def test_listing_error_is_provider_error(self):
        client = MagicMock()
        client.list_blobs.side_effect = Forbidden('denied')

        with pytest.raises(ProviderError, match="denied"):
            connector_for(client).list_backups('inst-a', GCS_CREDENTIALS)

    def test_list_backups(self, gcs):
        client = gcs.client({'inst-a': [
            gcs.blob('backups/acme-inst-a-2022-2-8_5_0_16-868/files.json', 1),
            gcs.blob('backups/acme-inst-a-2022-3-1_5_0_16-123/files.json', 2),
            gcs.blob('backups/acme-inst-a-2022-3-1_5_0_16-123/public/x', 3),
            gcs.blob('backups/stray.txt', 4),
            gcs.blob('public/x', 5),
        ]})

        backups = connector_for(client).list_backups('inst-a', GCS_CREDENTIALS)

        assert backups == ['acme-inst-a-2022-2-8_5_0_16-868', 'acme-inst-a-2022-3-1_5_0_16-123']

    def test_list_backups_shared_bucket(self, gcs):
        client = gcs.client({'shared-backups': [
            gcs.blob('inst-b/backups/acme-inst-b-2022-2-8_5_0_16-868/files.json', 1),
            gcs.blob('inst-c/backups/acme-inst-c-2022-2-8_5_0_16-868/files.json', 1),
        ]})

        backups = connector_for(client).list_backups('inst-b', SHARED_CREDENTIALS)

        assert backups == ['acme-inst-b-2022-2-8_5_0_16-868']


class TestGCSDelete:
    """Test generation deletes and delete_all."""

    def test_delete_object_version_targets_generation(self, gcs):
        client = gcs.client({'inst-a': [gcs.blob('a', 1), gcs.blob('a', 2)]})

        message = connector_for(client).delete_object_version('inst-a', 'a', '1', GCS_CREDENTIALS)

        assert message == 'Deleted inst-a/a'
        assert client.deleted == [('inst-a', 'a', 1)]
        assert [b.generation for b in client.buckets['inst-a']] == [2]

    def test_delete_missing_generation_counts_as_deleted(self, gcs):
        client = gcs.client({'inst-a': []})

        assert connector_for(client).delete_object_version('inst-a', 'a', '9', GCS_CREDENTIALS) == 'Deleted inst-a/a'

    def test_delete_error_is_provider_error(self):
        client = MagicMock()
        client.bucket.return_value.blob.return_value.delete.side_effect = ServiceUnavailable('down')

        with pytest.raises(ProviderError, match="generation 3"):
            connector_for(client).delete_object_version('inst-a', 'a', '3', GCS_CREDENTIALS)

    def test_delete_all_folder(self, gcs):
        client = gcs.client({'inst-a': [
            gcs.blob('backups/old/files.json', 1),
            gcs.blob('backups/old/files.json', 2),
            gcs.blob('backups/old/public/x', 3),
            gcs.blob('backups/new/files.json', 4),
        ]})

        result = connector_for(client).delete_all('inst-a', 'backups/old', GCS_CREDENTIALS)

        assert result.deleted_count == 3
        assert result.bucket_deleted is False
        assert [b.name for b in client.buckets['inst-a']] == ['backups/new/files.json']

    def test_delete_all_root_removes_bucket(self, gcs):
        client = gcs.client({'inst-a': [gcs.blob('a', 1), gcs.blob('b', 2), gcs.blob('c', 3)]})

        result = connector_for(client).delete_all('inst-a', '', GCS_CREDENTIALS)

        assert result.deleted_count == 3
        assert result.bucket_deleted is True
        assert client.deleted_buckets == ['inst-a']

    def test_delete_all_root_keeps_shared_bucket(self, gcs):
        client = gcs.client({'shared-backups': [gcs.blob('inst-b/a', 1), gcs.blob('inst-c/a', 1)]})

        result = connector_for(client).delete_all('inst-b', '', SHARED_CREDENTIALS)

        assert result.deleted_count == 1
        assert client.deleted_buckets == []
        assert [b.name for b in client.buckets['shared-backups']] == ['inst-c/a']


class TestGCSBuckets:
    """Test read_object and configure_bucket."""

    def test_read_object(self, gcs):
        client = gcs.client({'inst-a': [gcs.blob('backups/x/files.json', 1, data=b'{"public": []}')]})

        assert connector_for(client).read_object('inst-a', 'backups/x/files.json', GCS_CREDENTIALS) == b'{"public": []}'

    def test_read_missing_object(self, gcs):
        with pytest.raises(NotFoundError):
            connector_for(gcs.client({'inst-a': []})).read_object('inst-a', 'missing', GCS_CREDENTIALS)

    def test_configure_bucket(self, gcs):
        client = gcs.client({'inst-a': []})

        connector_for(client).configure_bucket('inst-a', GCS_CREDENTIALS, tags={'installation': 'inst-a'})

        assert len(client.patched) == 1
        bucket = client.patched[0]
        assert bucket.versioning_enabled is True
        assert bucket.labels == {'installation': 'inst-a'}

    @patch('bucketkeeper.utils.retry.time.sleep')
    def test_configure_missing_bucket(self, mock_sleep, gcs):
        with pytest.raises(NotFoundError):
            connector_for(gcs.client()).configure_bucket('inst-a', GCS_CREDENTIALS)


class TestGCSTransfer:
    """Test transfer_backup_files."""

    def _manifest(self):
        return {
            'public': [
                {'name': 'public/a.txt', 'generation': '9', 'size': '3'},
                {'name': 'public/a.txt', 'generation': '10', 'size': '3'},
            ],
            'private': [{'name': 'private/p.txt', 'generation': '4', 'size': '6'}],
        }

    def _source(self, gcs):
        return gcs.client({
            'inst-a': [
                gcs.blob('public/a.txt', 9, data=b'old'),
                gcs.blob('public/a.txt', 10, data=b'new'),
                gcs.blob('private/p.txt', 4, data=b'secret'),
            ],
            'shared-backups': [],
        })

    def test_copies_highest_generation_into_shared_bucket(self, gcs):
        client = self._source(gcs)

        result = connector_for(client).transfer_backup_files(
            'inst-a', GCS_CREDENTIALS, 'inst-b', SHARED_CREDENTIALS, self._manifest()
        )

        assert result.copied_count == 2
        assert result.skipped_count == 1
        assert sorted(client.copies) == [
            ('inst-a', 'private/p.txt', 4, 'shared-backups', 'inst-b/private/p.txt'),
            ('inst-a', 'public/a.txt', 10, 'shared-backups', 'inst-b/public/a.txt'),
        ]

    def test_missing_destination_bucket(self, gcs):
        client = gcs.client({'inst-a': []})

        with pytest.raises(NotFoundError, match="inst-z"):
            connector_for(client).transfer_backup_files(
                'inst-a', GCS_CREDENTIALS, 'inst-z', GCS_CREDENTIALS, self._manifest()
            )
        assert client.copies == []

    def test_failed_copies_are_aggregated(self, gcs):
        client = self._source(gcs)
        manifest = self._manifest()
        manifest['private'].append({'name': 'private/gone.txt', 'generation': '1', 'size': '0'})

        with pytest.raises(AggregateBatchError) as exc_info:
            connector_for(client).transfer_backup_files(
                'inst-a', GCS_CREDENTIALS, 'inst-b', SHARED_CREDENTIALS, manifest
            )

        assert exc_info.value.succeeded_count == 2
        assert [f['path'] for f in exc_info.value.failures] == ['inst-b/private/gone.txt']


class TestGCSClientCreation:
    """Test client construction from credentials."""

    @patch('bucketkeeper.storage.gcs.storage.Client')
    @patch('bucketkeeper.storage.gcs.service_account.Credentials.from_service_account_info')
    def test_service_account_info(self, mock_from_info, mock_client):
        credentials = {'project_id': 'p', 'credentials': {'client_email': 'svc@p', 'private_key': 'k'}}

        GCSConnector().get_client(credentials)

        info = mock_from_info.call_args[0][0]
        assert info['client_email'] == 'svc@p'
        assert info['token_uri'] == 'https://oauth2.googleapis.com/token'
        mock_client.assert_called_once_with(project='p', credentials=mock_from_info.return_value)

    @patch('bucketkeeper.storage.gcs.storage.Client')
    def test_keyfile(self, mock_client):
        GCSConnector().get_client({'projectId': 'p', 'keyfile': '/etc/key.json'})

        mock_client.from_service_account_json.assert_called_once_with('/etc/key.json', project='p')

    @patch('bucketkeeper.storage.gcs.storage.Client')
    def test_invalid_credentials(self, mock_client):
        mock_client.side_effect = ValueError('bad key')

        with pytest.raises(ProviderError, match="bad key"):
            GCSConnector().get_client({'project_id': 'p'})
