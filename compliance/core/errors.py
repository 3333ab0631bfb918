"""Error taxonomy shared by the compliance workflows.

Services raise these and never swallow them; the HTTP layer maps each class to
a status code so callers can tell "fix your input" apart from "wait for review".
"""
from __future__ import annotations


class ComplianceError(Exception):
    code = 'compliance_error'

    def __init__(self, message: str = '') -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {'code': self.code, 'detail': self.message}


class ValidationFailed(ComplianceError, ValueError):
    code = 'validation_failed'

    def __init__(
        self,
        errors: dict[str, str] | None = None,
        file_errors: list[str] | None = None,
        message: str = 'Validation failed',
    ) -> None:
        super().__init__(message)
        self.errors = dict(errors or {})
        self.file_errors = list(file_errors or [])

    def to_dict(self) -> dict:
        return {
            'code': self.code,
            'detail': self.message,
            'errors': self.errors,
            'file_errors': self.file_errors,
        }


class AlreadySubmitted(ComplianceError):
    code = 'already_submitted'

    def __init__(self, submission_id: int | None = None, status: str = '') -> None:
        if status == 'approved':
            message = 'This compliance item is already complete'
        else:
            message = 'A submission for this compliance item is already under review'
        super().__init__(message)
        self.submission_id = submission_id
        self.status = status

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload['submission_id'] = self.submission_id
        payload['status'] = self.status
        return payload


class InvalidTransition(ComplianceError):
    code = 'invalid_transition'

    def __init__(self, current: str, action: str, message: str = '') -> None:
        super().__init__(message or f'Cannot {action} a submission in status {current}')
        self.current = current
        self.action = action


class MissingReason(ComplianceError, ValueError):
    code = 'missing_reason'

    def __init__(self, message: str = 'A rejection reason is required') -> None:
        super().__init__(message)


class NotFound(ComplianceError, LookupError):
    code = 'not_found'


class StorageFailure(ComplianceError, RuntimeError):
    code = 'storage_failure'
