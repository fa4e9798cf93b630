from statmail.models.base import Base
from statmail.models.job_run import JobRun
from statmail.models.sent_report import SentMonthlyReport, SentWeeklyReport
from statmail.models.site import ReportSubscription, Site

__all__ = [
    "Base",
    "Site",
    "ReportSubscription",
    "SentWeeklyReport",
    "SentMonthlyReport",
    "JobRun",
]
