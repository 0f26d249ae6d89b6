from sitedocs.models.site import Site, Profile, SiteAssignment
from sitedocs.models.requirement import DocumentRequirement, RequirementRoleMapping, SiteRequirementOverride
from sitedocs.models.submission import Submission
from sitedocs.models.document import Document, LegacyDocument, SiteDocument
from sitedocs.models.attachment import DailyReport, Attachment
from sitedocs.models.metric import AnalyticsMetric

__all__ = [
    "Site", "Profile", "SiteAssignment",
    "DocumentRequirement", "RequirementRoleMapping", "SiteRequirementOverride",
    "Submission",
    "Document", "LegacyDocument", "SiteDocument",
    "DailyReport", "Attachment",
    "AnalyticsMetric",
]
