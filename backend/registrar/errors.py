"""Typed failures raised by the services.

Every failure is detected before anything is written. Controllers map
them onto HTTP responses through `status_code`; store-level errors
(connectivity, unique-index violations) are not wrapped and surface as
internal errors.
"""


class RegistrarError(ValueError):
    """Base class for domain failures reported back to the caller."""
    status_code = 400


class ValidationError(RegistrarError):
    """Missing or malformed field, or an unknown enum value."""


class InvalidStatus(ValidationError):
    """A status value outside the allowed set, or a forbidden transition."""


class ReferenceNotFound(RegistrarError):
    """A stream/department/semester/subject id in the request does not resolve."""


class InvalidSubjects(RegistrarError):
    """Subject ids outside the legal set for a semester (and department)."""


class TerminalSemester(RegistrarError):
    """Promotion requested for a student already in the final semester."""


class NoOp(RegistrarError):
    """The requested change would leave the student as it is."""


class NotFound(RegistrarError):
    """The addressed student, faculty member or backlog entry does not exist."""
    status_code = 404
