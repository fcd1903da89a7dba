"""ORM models package.

Import all models here so that SQLAlchemy's metadata is fully populated
when Alembic runs autogenerate.
"""

from privacy_engine.models.audit import AuditEventRecord
from privacy_engine.models.consent import ConsentRecordRow
from privacy_engine.models.gdpr_request import DataSubjectRequestRecord
from privacy_engine.models.retention_policy import RetentionPolicyRecord

__all__ = [
    "AuditEventRecord",
    "ConsentRecordRow",
    "DataSubjectRequestRecord",
    "RetentionPolicyRecord",
]
