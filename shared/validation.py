"""Input validation utilities."""
import bleach
from shared.enums import SurveyStatus, PermissionAction


class ValidationError(Exception):
    """Raised when input validation fails."""
    code = 'validation_error'
    http_status = 400


class Validator:
    """Input validation utilities."""

    NOTE_MAX_LENGTH = 2000

    @staticmethod
    def validate_required(value, field_name):
        """Validate that a required field is not empty."""
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{field_name} is required")
        return value

    @staticmethod
    def validate_string_length(value, field_name, min_length=0, max_length=None):
        """Validate string length constraints."""
        if not isinstance(value, str):
            raise ValidationError(f"{field_name} must be a string")

        if len(value) < min_length:
            raise ValidationError(f"{field_name} must be at least {min_length} characters")

        if max_length and len(value) > max_length:
            raise ValidationError(f"{field_name} must be no more than {max_length} characters")

        return value.strip()

    @staticmethod
    def validate_choice(value, field_name, valid_choices):
        """Validate that value is one of the allowed choices."""
        if value not in valid_choices:
            raise ValidationError(f"{field_name} must be one of: {', '.join(valid_choices)}")
        return value

    @staticmethod
    def validate_status(value, field_name='status'):
        """Coerce a status string into SurveyStatus, rejecting unknown values."""
        if isinstance(value, SurveyStatus):
            return value
        Validator.validate_required(value, field_name)
        if not isinstance(value, str):
            raise ValidationError(f"{field_name} must be a string")
        Validator.validate_choice(value.strip(), field_name, [s.value for s in SurveyStatus])
        return SurveyStatus(value.strip())

    @staticmethod
    def validate_actions(actions, resource):
        """Validate a list of permission actions for a resource."""
        if not isinstance(actions, (list, tuple, set, frozenset)):
            raise ValidationError(f"permissions for '{resource}' must be a list of actions")
        valid = [a.value for a in PermissionAction]
        return frozenset(PermissionAction(Validator.validate_choice(a, f"action for '{resource}'", valid))
                         for a in actions)

    @staticmethod
    def sanitize_html(text):
        """Strip all markup from free text using bleach.

        Plain text without markup characters is returned as-is.
        """
        if not text:
            return text

        if '<' not in text and '>' not in text and '&' not in text:
            return text

        return bleach.clean(text, tags=[], attributes={}, strip=True)

    @staticmethod
    def sanitize_note(note):
        """Sanitize an optional transition note. Blank notes become None."""
        if note is None:
            return None
        if not isinstance(note, str):
            raise ValidationError("note must be a string")
        note = Validator.sanitize_html(note).strip()
        if not note:
            return None
        return Validator.validate_string_length(note, 'note', 0, Validator.NOTE_MAX_LENGTH)
