import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from compliance.cache import cache
from compliance.core.errors import NotFound, ValidationFailed
from compliance.db import Base
from compliance.models import (
    ComplianceForm,
    ComplianceFormField,
    ComplianceItem,
    ComplianceNotification,
    ComplianceSubmission,
)
from compliance.services.form_schema_service import create_compliance_form, update_compliance_form
from compliance.services.item_service import (
    create_compliance_item,
    delete_compliance_item,
    get_compliance_item,
    list_compliance_items,
    list_item_payloads,
    update_compliance_item,
)
from compliance.services.submission_service import mark_compliance_as_complete


class ItemServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_item_service.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        self.db = self._session_factory()
        for table in (
            ComplianceNotification,
            ComplianceSubmission,
            ComplianceItem,
            ComplianceFormField,
            ComplianceForm,
        ):
            self.db.query(table).delete()
        self.db.commit()
        cache.invalidate_prefix('compliance_')

    def tearDown(self):
        self.db.close()

    def _form(self):
        return create_compliance_form(
            self.db,
            title='Medical info',
            fields=[{'name': 'allergies', 'label': 'Allergies', 'type': 'textarea'}],
            created_by='admin-1',
        )

    def _item(self, title='Consent', role='parent', **kwargs):
        return create_compliance_item(
            self.db,
            title=title,
            description='Sign the consent',
            target_role=role,
            item_type=kwargs.pop('item_type', 'verification'),
            created_by='admin-1',
            **kwargs,
        )

    def test_create_normalizes_values(self):
        due = datetime(2026, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=5, minutes=30)))
        item = create_compliance_item(
            self.db,
            title='  Photo consent ',
            description=' Allow school photos ',
            target_role='Parent',
            item_type='VERIFICATION',
            created_by='admin-1',
            due_date=due,
        )
        self.assertEqual(item.title, 'Photo consent')
        self.assertEqual(item.target_role, 'parent')
        self.assertEqual(item.type, 'verification')
        self.assertEqual(item.due_date, datetime(2026, 5, 1, 6, 30))
        self.assertTrue(item.is_active)
        self.assertTrue(item.is_mandatory)

    def test_has_form_requires_an_active_form(self):
        with self.assertRaises(ValidationFailed) as ctx:
            self._item(has_form=True)
        self.assertIn('form_id', ctx.exception.errors)

        form = self._form()
        update_compliance_form(self.db, form.id, is_active=False)
        with self.assertRaises(ValidationFailed) as ctx:
            self._item(has_form=True, form_id=form.id)
        self.assertEqual(ctx.exception.errors['form_id'], 'Form not found or inactive')
        self.assertEqual(self.db.query(ComplianceItem).count(), 0)

    def test_form_id_is_dropped_without_has_form(self):
        form = self._form()
        item = self._item(form_id=form.id)
        self.assertFalse(item.has_form)
        self.assertIsNone(item.form_id)

    def test_invalid_role_and_type(self):
        with self.assertRaises(ValidationFailed) as ctx:
            self._item(role='admin', item_type='survey')
        self.assertIn('target_role', ctx.exception.errors)
        self.assertIn('type', ctx.exception.errors)

    def test_list_filters_by_role_newest_first(self):
        older = self._item('Older', role='teacher')
        newer = self._item('Newer', role='teacher')
        self._item('For parents', role='parent')

        self.assertEqual([item.id for item in list_compliance_items(self.db, 'teacher')], [newer.id, older.id])
        self.assertEqual(len(list_compliance_items(self.db)), 3)

    def test_update_clears_form_when_has_form_is_turned_off(self):
        form = self._form()
        item = self._item(has_form=True, form_id=form.id, item_type='form_submission')

        updated = update_compliance_item(self.db, item.id, {'has_form': False, 'title': 'Consent (paper)'})
        self.assertFalse(updated.has_form)
        self.assertIsNone(updated.form_id)
        self.assertEqual(updated.title, 'Consent (paper)')

    def test_update_validates_merged_values(self):
        item = self._item()
        with self.assertRaises(ValidationFailed):
            update_compliance_item(self.db, item.id, {'has_form': True})
        self.db.rollback()
        self.assertFalse(get_compliance_item(self.db, item.id).has_form)

    def test_delete_without_submissions_removes_the_row(self):
        item = self._item()
        self.assertEqual(delete_compliance_item(self.db, item.id), {'ok': True, 'deleted': True, 'deactivated': False})
        self.assertEqual(self.db.query(ComplianceItem).count(), 0)

    def test_delete_with_submissions_only_deactivates(self):
        item = self._item()
        mark_compliance_as_complete(self.db, item.id, 'parent-1')

        result = delete_compliance_item(self.db, item.id)
        self.assertEqual(result, {'ok': True, 'deleted': False, 'deactivated': True})
        self.assertEqual(list_compliance_items(self.db, 'parent'), [])
        with self.assertRaises(NotFound):
            get_compliance_item(self.db, item.id)
        self.assertFalse(get_compliance_item(self.db, item.id, include_inactive=True).is_active)
        self.assertEqual(self.db.query(ComplianceSubmission).count(), 1)

    def test_payload_cache_is_invalidated_by_writes(self):
        self._item('First')
        self.assertEqual([row['title'] for row in list_item_payloads(self.db, 'parent')], ['First'])
        self._item('Second')
        self.assertEqual([row['title'] for row in list_item_payloads(self.db, 'parent')], ['Second', 'First'])

    def test_unknown_item(self):
        with self.assertRaises(NotFound):
            update_compliance_item(self.db, 999, {'title': 'Nope'})


if __name__ == '__main__':
    unittest.main()
