# Import every model so Base.metadata knows all tables
from app.models.base import Base
from app.models.testrun import TestRun
from app.models.testcase import TestCase
from app.models.classification import Classification, AuditLogEntry
from app.models.defect import DefectGroup, DefectGroupMember

__all__ = ["Base", "TestRun", "TestCase", "Classification", "AuditLogEntry", "DefectGroup", "DefectGroupMember"]
