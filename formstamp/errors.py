"""Exception hierarchy for formstamp.

Page- and field-level errors are caught by the extractor and the render
engine and reported alongside a usable result. Validation and encoding
errors propagate to the caller.
"""


class FormStampError(Exception):
    """Base exception for all formstamp errors."""
    pass


# Source documents
class DocumentLoadError(FormStampError):
    """Raised when a source document cannot be opened (corrupt, encrypted, unsupported)."""
    pass


class DocumentParseError(FormStampError):
    """Raised when a document opened but one of its pages cannot be decoded."""

    def __init__(self, page_index: int, reason: str):
        self.page_index = page_index
        self.reason = reason
        super().__init__(f"Failed to parse page {page_index}: {reason}")


# Templates
class TemplateValidationError(FormStampError):
    """Raised when template JSON is malformed or violates template invariants."""

    def __init__(self, message: str, errors: list | None = None):
        self.errors = errors or []
        super().__init__(message)


class TemplateNotFoundError(FormStampError):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template '{template_id}' not found")


# Rendering
class FieldRenderError(FormStampError):
    """Raised when a single field cannot be drawn. Non-fatal for the render."""

    def __init__(self, field_id: str, reason: str):
        self.field_id = field_id
        self.reason = reason
        super().__init__(f"Failed to render field '{field_id}': {reason}")


class BindingValidationError(FieldRenderError):
    """Raised when a bound value does not fit its field's type or rules."""
    pass


class BackgroundError(FormStampError):
    """Raised when the template background cannot be decoded or composed."""
    pass


class FontRegistrationError(FormStampError):
    """Raised when a font file cannot be fetched or registered."""
    pass


class ArtifactEncodingError(FormStampError):
    """Raised when the final artifact cannot be produced. Fatal."""
    pass


class RenderCancelledError(FormStampError):
    """Raised when a render is cancelled. Partial output is discarded."""

    def __init__(self, committed_fields: int = 0):
        self.committed_fields = committed_fields
        super().__init__(f"Render cancelled after {committed_fields} field(s)")
