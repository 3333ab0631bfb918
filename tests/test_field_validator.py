import unittest

from compliance.domain.fields import (
    FIELD_BUILDERS,
    CheckboxField,
    DateField,
    EmailField,
    FileField,
    NumberField,
    PhoneField,
    SelectField,
    TextField,
    build_field_spec,
)
from compliance.models import ComplianceFormField, FieldType
from compliance.services.field_validator import IncomingFile, format_file_size, validate_field, validate_form


TWO_MB = 2 * 1024 * 1024


class FieldValidatorTests(unittest.TestCase):
    def test_required_text_field_rejects_blank_values(self):
        spec = TextField(name='full_name', label='Full name', required=True)
        for value in (None, '', '   '):
            result = validate_field(spec, value)
            self.assertFalse(result.ok)
            self.assertEqual(result.error, 'Full name is required')

    def test_optional_blank_field_is_accepted_without_value(self):
        result = validate_field(TextField(name='nickname', label='Nickname'), '')
        self.assertTrue(result.ok)
        self.assertIsNone(result.value)

    def test_text_length_and_pattern_rules(self):
        spec = TextField(name='code', label='Staff code', min_length=3, max_length=6, pattern=r'^[A-Z]+\d*$')
        self.assertEqual(validate_field(spec, 'AB').error, 'Staff code must be at least 3 characters')
        self.assertEqual(validate_field(spec, 'ABCDEFG').error, 'Staff code must not exceed 6 characters')
        self.assertEqual(validate_field(spec, 'ab12').error, 'Staff code format is invalid')
        self.assertTrue(validate_field(spec, 'ABC12').ok)

    def test_email_and_phone_formats(self):
        email = EmailField(name='email', label='Email')
        phone = PhoneField(name='phone', label='Phone')
        self.assertEqual(validate_field(email, 'not-an-email').error, 'Please enter a valid email address')
        self.assertTrue(validate_field(email, 'parent@example.org').ok)
        self.assertEqual(validate_field(phone, 'call me').error, 'Please enter a valid phone number')
        self.assertTrue(validate_field(phone, '+1 (555) 123-4567').ok)

    def test_number_is_normalized_and_bounded(self):
        spec = NumberField(name='age', label='Age', min_value=18, max_value=70)
        result = validate_field(spec, '42')
        self.assertTrue(result.ok)
        self.assertEqual(result.value, 42)
        self.assertEqual(validate_field(spec, '17').error, 'Age must be at least 18')
        self.assertEqual(validate_field(spec, 71.5).error, 'Age must not exceed 70')
        self.assertEqual(validate_field(spec, 'forty').error, 'Age must be a number')
        self.assertEqual(validate_field(spec, True).error, 'Age must be a number')

    def test_non_finite_numbers_are_rejected(self):
        bounded = NumberField(name='age', label='Age', min_value=18, max_value=70, required=True)
        unbounded = NumberField(name='score', label='Score')
        for value in ('nan', 'NaN', float('nan'), 'inf', float('-inf'), '1e400'):
            self.assertEqual(validate_field(bounded, value).error, 'Age must be a number')
            self.assertEqual(validate_field(unbounded, value).error, 'Score must be a number')

    def test_numeric_values_pass_string_rules(self):
        phone = PhoneField(name='phone', label='Phone')
        result = validate_field(phone, 5551234)
        self.assertTrue(result.ok)
        self.assertEqual(result.value, '5551234')
        code = TextField(name='code', label='Staff code', min_length=3)
        self.assertEqual(validate_field(code, 12).error, 'Staff code must be at least 3 characters')
        self.assertEqual(validate_field(code, ['a']).error, 'Staff code must be text')

    def test_validate_form_keeps_non_finite_numbers_out_of_clean_data(self):
        specs = [NumberField(name='age', label='Age', required=True)]
        result = validate_form(specs, {'age': 'nan'})
        self.assertFalse(result.is_valid)
        self.assertEqual(result.errors, {'age': 'Age must be a number'})
        self.assertNotIn('age', result.cleaned_data)

    def test_date_must_be_iso(self):
        spec = DateField(name='dob', label='Date of birth')
        self.assertTrue(validate_field(spec, '2010-04-01').ok)
        self.assertEqual(validate_field(spec, '01/04/2010').error, 'Date of birth must be a valid date (YYYY-MM-DD)')

    def test_choice_fields_only_accept_declared_options(self):
        select = SelectField(name='shift', label='Shift', options=('Morning', 'Evening'))
        checkbox = CheckboxField(name='consents', label='Consents', options=('photo', 'trip'))
        self.assertTrue(validate_field(select, 'Morning').ok)
        self.assertEqual(validate_field(select, 'Night').error, 'Shift must be one of: Morning, Evening')
        self.assertEqual(validate_field(checkbox, ['photo', 'trip']).value, ['photo', 'trip'])
        self.assertEqual(validate_field(checkbox, ['photo', 'swim']).error, 'Consents has invalid option(s): swim')

    def test_required_checkbox_rejects_empty_selection(self):
        spec = CheckboxField(name='consents', label='Consents', required=True, options=('photo',))
        self.assertEqual(validate_field(spec, []).error, 'Consents is required')

    def test_file_size_limit_is_inclusive(self):
        spec = FileField(name='id_document', label='ID document', required=True, max_file_size=TWO_MB)
        at_limit = IncomingFile('id_document', 'id.pdf', 'application/pdf', b'x' * TWO_MB)
        over_limit = IncomingFile('id_document', 'id.pdf', 'application/pdf', b'x' * (TWO_MB + 1))

        self.assertTrue(validate_field(spec, None, [at_limit]).ok)
        result = validate_field(spec, None, [over_limit])
        self.assertFalse(result.ok)
        self.assertEqual(result.file_errors, ['id.pdf exceeds 2.0 MB size limit'])

    def test_file_type_allow_list_matches_mime_or_name(self):
        spec = FileField(name='id_document', label='ID document', allowed_file_types=('pdf', 'image/jpeg'))
        pdf = IncomingFile('id_document', 'scan.PDF', 'application/octet-stream', b'%PDF')
        jpeg = IncomingFile('id_document', 'photo', 'image/jpeg', b'\xff\xd8')
        png = IncomingFile('id_document', 'photo.png', 'image/png', b'\x89PNG')

        self.assertTrue(validate_field(spec, None, [pdf, jpeg]).ok)
        self.assertEqual(validate_field(spec, None, [png]).file_errors, ['photo.png is not an allowed file type'])

    def test_required_file_field_needs_an_attachment(self):
        spec = FileField(name='id_document', label='ID document', required=True)
        self.assertEqual(validate_field(spec, None, []).error, 'ID document is required')

    def test_validate_form_collects_errors_and_drops_unknown_keys(self):
        specs = [
            TextField(name='full_name', label='Full name', required=True),
            NumberField(name='years', label='Years of service'),
            FileField(name='certificate', label='Certificate'),
        ]
        ok = validate_form(
            specs,
            {'full_name': 'Asha Rao', 'years': '7', 'shoe_size': 9},
            [IncomingFile('certificate', 'cert.pdf', 'application/pdf', b'%PDF')],
        )
        self.assertTrue(ok.is_valid)
        self.assertEqual(ok.cleaned_data, {'full_name': 'Asha Rao', 'years': 7, 'certificate': ['cert.pdf']})

        bad = validate_form(
            specs,
            {'years': 'many'},
            [IncomingFile('full_name', 'stray.txt', 'text/plain', b'hi')],
        )
        self.assertFalse(bad.is_valid)
        self.assertEqual(bad.errors['full_name'], 'Full name is required')
        self.assertEqual(bad.errors['years'], 'Years of service must be a number')
        self.assertEqual(bad.file_errors, ['stray.txt is not attached to a file field'])

    def test_every_field_type_has_a_builder(self):
        self.assertEqual(set(FIELD_BUILDERS), set(FieldType))
        for field_type in FieldType:
            row = ComplianceFormField(
                name=f'{field_type.value}_field',
                label=field_type.value.title(),
                type=field_type.value,
                required=False,
                options=['a', 'b'],
                validation={},
                order=0,
            )
            spec = build_field_spec(row)
            self.assertEqual(spec.name, f'{field_type.value}_field')

    def test_file_builder_falls_back_to_default_limit(self):
        row = ComplianceFormField(name='doc', label='Doc', type='file', required=True, validation=None, order=0)
        spec = build_field_spec(row)
        self.assertIsInstance(spec, FileField)
        self.assertEqual(spec.max_file_size, TWO_MB)

    def test_unknown_field_type_is_rejected(self):
        row = ComplianceFormField(name='sig', label='Signature', type='signature', order=0)
        with self.assertRaises(ValueError):
            build_field_spec(row)

    def test_format_file_size(self):
        self.assertEqual(format_file_size(512), '512 B')
        self.assertEqual(format_file_size(1536), '1.5 KB')
        self.assertEqual(format_file_size(TWO_MB), '2.0 MB')


if __name__ == '__main__':
    unittest.main()
