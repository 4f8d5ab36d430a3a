"""Audit trail: snapshot diffing, query service and writer."""

from .diff import FieldChange, build_diff
from .logger import AuditLogger
from .models import AuditFilterOptions, AuditLogFilter, AuditLogPage, AuditSortKey, SortDirection
from .repository import AuditLogRepository
from .service import AuditLogDetail, AuditLogService

__all__ = [
    "AuditFilterOptions",
    "AuditLogDetail",
    "AuditLogFilter",
    "AuditLogger",
    "AuditLogPage",
    "AuditLogRepository",
    "AuditLogService",
    "AuditSortKey",
    "FieldChange",
    "SortDirection",
    "build_diff",
]
