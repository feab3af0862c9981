"""
Bulk S3 Content-Disposition remediation.

Walks every blob record in the application's datastore and copies each S3
object onto itself with replaced metadata: images are served inline, all
other files as attachments, both under their original filename.
"""

from .disposition import decide, parse_content_disposition
from .errors import ConfigurationError, EnumerationError, ObjectNotFound, RemediationError
from .models import Disposition, DispositionDecision, OutcomeStatus, RemediationOutcome, StorageObjectRef
from .runner import RunController, run

__version__ = "0.1.0"
