import unittest

from compliance.core.errors import AlreadySubmitted, InvalidTransition
from compliance.domain.status_machine import (
    SubmissionAction,
    SubmissionState,
    can_submit,
    is_live,
    state_from_status,
    transition,
)


class StatusMachineTests(unittest.TestCase):
    def test_allowed_transitions(self):
        self.assertEqual(transition(SubmissionState.NO_SUBMISSION, SubmissionAction.SUBMIT), SubmissionState.SUBMITTED)
        self.assertEqual(transition(SubmissionState.REJECTED, SubmissionAction.SUBMIT), SubmissionState.SUBMITTED)
        self.assertEqual(transition(SubmissionState.SUBMITTED, SubmissionAction.APPROVE), SubmissionState.APPROVED)
        self.assertEqual(transition(SubmissionState.SUBMITTED, SubmissionAction.REJECT), SubmissionState.REJECTED)

    def test_submit_on_live_state_reports_existing_submission(self):
        with self.assertRaises(AlreadySubmitted) as ctx:
            transition(SubmissionState.SUBMITTED, SubmissionAction.SUBMIT, submission_id=7)
        self.assertEqual(ctx.exception.submission_id, 7)
        self.assertEqual(ctx.exception.status, 'submitted')

        with self.assertRaises(AlreadySubmitted) as ctx:
            transition(SubmissionState.APPROVED, SubmissionAction.SUBMIT)
        self.assertEqual(ctx.exception.message, 'This compliance item is already complete')

    def test_review_outside_submitted_is_invalid(self):
        for state in (SubmissionState.NO_SUBMISSION, SubmissionState.APPROVED, SubmissionState.REJECTED):
            for action in (SubmissionAction.APPROVE, SubmissionAction.REJECT):
                with self.assertRaises(InvalidTransition):
                    transition(state, action)

    def test_state_from_status(self):
        self.assertEqual(state_from_status(None), SubmissionState.NO_SUBMISSION)
        self.assertEqual(state_from_status('pending'), SubmissionState.NO_SUBMISSION)
        self.assertEqual(state_from_status('rejected'), SubmissionState.REJECTED)
        with self.assertRaises(ValueError):
            state_from_status('archived')

    def test_live_and_submittable_states(self):
        self.assertTrue(is_live(SubmissionState.SUBMITTED))
        self.assertTrue(is_live(SubmissionState.APPROVED))
        self.assertFalse(is_live(SubmissionState.REJECTED))
        self.assertTrue(can_submit(SubmissionState.NO_SUBMISSION))
        self.assertTrue(can_submit(SubmissionState.REJECTED))
        self.assertFalse(can_submit(SubmissionState.SUBMITTED))
        self.assertFalse(can_submit(SubmissionState.APPROVED))


if __name__ == '__main__':
    unittest.main()
