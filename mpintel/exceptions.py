"""Exception types raised across the ingestion pipeline.

Validation warnings and matcher non-matches are ordinary data and never
appear here; these exceptions cover infrastructure failures and commands
that are rejected outright.
"""

from __future__ import annotations

from uuid import UUID


class PipelineError(Exception):
    """Base class for pipeline errors."""


class DocumentNotFoundError(PipelineError):
    def __init__(self, document_id: UUID | str):
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class QuoteNotFoundError(PipelineError):
    def __init__(self, quote_id: UUID | str):
        super().__init__(f"Quote {quote_id} not found")
        self.quote_id = quote_id


class LineItemNotFoundError(PipelineError):
    def __init__(self, line_item_id: UUID | str):
        super().__init__(f"Line item {line_item_id} not found")
        self.line_item_id = line_item_id


class DispatchError(PipelineError):
    """A job could not be submitted to the work queue.

    ``document_id`` is set when the document itself was persisted and only
    its extraction job is missing, so callers can still return it.
    """

    def __init__(self, message: str, document_id: UUID | str | None = None):
        super().__init__(message)
        self.document_id = document_id


class ExtractionError(PipelineError):
    """The extraction service failed or returned an unusable payload."""


class ExtractionTimeoutError(ExtractionError):
    """The extraction service did not answer within the configured deadline."""


class QuoteImmutableError(PipelineError):
    """Edits were submitted for a quote that is already approved."""

    def __init__(self, quote_id: UUID | str):
        super().__init__(f"Quote {quote_id} is immutable after approval")
        self.quote_id = quote_id


class ReviewNotAllowedError(PipelineError):
    """The owning document is not in a reviewable status."""

    def __init__(self, quote_id: UUID | str, status: str):
        super().__init__(
            f"Quote {quote_id} cannot be reviewed while its document is '{status}'"
        )
        self.quote_id = quote_id
        self.status = status


class StorageError(PipelineError):
    """A stored document could not be written or read back."""


class DocumentStateError(PipelineError):
    """A command is not valid for the document's current status."""

    def __init__(self, document_id: UUID | str, status: str, action: str):
        super().__init__(f"Cannot {action} document {document_id} while it is '{status}'")
        self.document_id = document_id
        self.status = status
        self.action = action


class MaterialNotFoundError(PipelineError):
    def __init__(self, material_id: UUID | str):
        super().__init__(f"Material {material_id} not found or inactive")
        self.material_id = material_id
