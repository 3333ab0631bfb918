import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import httpx

from compliance.core.errors import StorageFailure
from compliance.core.time_provider import TimeProvider
from compliance.services.auth_service import issue_session_token, validate_session_token
from compliance.services.file_storage_service import (
    LocalStorageBackend,
    SupabaseStorageBackend,
    build_object_path,
    discard_objects,
)


class FixedTimeProvider(TimeProvider):
    def __init__(self, moment: datetime) -> None:
        self._moment = moment

    def now(self) -> datetime:
        return self._moment


class SessionTokenTests(unittest.TestCase):
    def test_round_trip(self):
        token = issue_session_token('teacher-9', 'Teacher')
        self.assertEqual(validate_session_token(token), {'user_id': 'teacher-9', 'role': 'teacher'})

    def test_tampered_or_malformed_tokens_are_rejected(self):
        token = issue_session_token('teacher-9', 'teacher')
        header, payload, signature = token.split('.')
        forged_payload = issue_session_token('teacher-9', 'admin').split('.')[1]
        self.assertIsNone(validate_session_token(f'{header}.{forged_payload}.{signature}'))
        self.assertIsNone(validate_session_token('abc'))
        self.assertIsNone(validate_session_token(''))
        self.assertIsNone(validate_session_token(None))

    def test_non_ascii_tokens_are_rejected(self):
        header, payload, signature = issue_session_token('teacher-9', 'teacher').split('.')
        self.assertIsNone(validate_session_token(f'{header}é.{payload}.{signature}'))
        self.assertIsNone(validate_session_token('é.payload.signature'))

    def test_unknown_role_is_rejected(self):
        self.assertIsNone(validate_session_token(issue_session_token('user-1', 'janitor')))

    def test_expired_token(self):
        issued_at = FixedTimeProvider(datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc))
        token = issue_session_token('parent-3', 'parent', ttl_seconds=60, time_provider=issued_at)

        still_valid = FixedTimeProvider(issued_at.now() + timedelta(seconds=59))
        expired = FixedTimeProvider(issued_at.now() + timedelta(seconds=60))
        self.assertIsNotNone(validate_session_token(token, time_provider=still_valid))
        self.assertIsNone(validate_session_token(token, time_provider=expired))


class LocalStorageTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.backend = LocalStorageBackend(self._tmpdir.name, 'http://files.local/compliance/')

    def tearDown(self):
        self._tmpdir.cleanup()

    def test_object_paths_are_scoped_and_sanitized(self):
        path = build_object_path(user_id='teacher 1', item_id=12, filename='../my passport.pdf')
        user_part, item_part, name_part = path.split('/')
        self.assertEqual(user_part, 'teacher_1')
        self.assertEqual(item_part, '12')
        self.assertTrue(name_part.endswith('_my_passport.pdf'))
        self.assertNotEqual(
            build_object_path(user_id='teacher 1', item_id=12, filename='a.pdf'),
            build_object_path(user_id='teacher 1', item_id=12, filename='a.pdf'),
        )

    def test_upload_and_delete(self):
        stored = self.backend.upload('teacher-1/4/abc_cert.pdf', b'%PDF', 'application/pdf')
        self.assertEqual(stored.public_url, 'http://files.local/compliance/teacher-1/4/abc_cert.pdf')
        target = Path(self._tmpdir.name) / 'teacher-1' / '4' / 'abc_cert.pdf'
        self.assertEqual(target.read_bytes(), b'%PDF')

        discard_objects([stored.path], self.backend)
        self.assertFalse(target.exists())
        self.backend.delete(stored.path)

    def test_paths_outside_root_are_refused(self):
        with self.assertRaises(StorageFailure):
            self.backend.upload('../escape.txt', b'x', 'text/plain')


class SupabaseStorageTests(unittest.TestCase):
    def _backend(self, handler):
        transport = httpx.MockTransport(handler)
        real_client = httpx.Client

        def client_factory(*args, **kwargs):
            kwargs['transport'] = transport
            return real_client(*args, **kwargs)

        patcher = patch('compliance.services.file_storage_service.httpx.Client', side_effect=client_factory)
        patcher.start()
        self.addCleanup(patcher.stop)
        return SupabaseStorageBackend('https://project.supabase.test', 'service-key', 'compliance-files')

    def test_upload_posts_to_bucket(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={'Key': 'compliance-files/u/1/a.pdf'})

        stored = self._backend(handler).upload('u/1/a.pdf', b'%PDF', 'application/pdf')
        self.assertEqual(stored.public_url, 'https://project.supabase.test/storage/v1/object/public/compliance-files/u/1/a.pdf')
        self.assertEqual(seen[0].method, 'POST')
        self.assertEqual(seen[0].url.path, '/storage/v1/object/compliance-files/u/1/a.pdf')
        self.assertEqual(seen[0].headers['authorization'], 'Bearer service-key')

    def test_upload_errors_become_storage_failures(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text='bucket offline')

        with self.assertRaises(StorageFailure):
            self._backend(handler).upload('u/1/a.pdf', b'%PDF', 'application/pdf')

    def test_missing_configuration(self):
        with self.assertRaises(StorageFailure):
            SupabaseStorageBackend('', '', 'compliance-files')


if __name__ == '__main__':
    unittest.main()
