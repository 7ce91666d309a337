from .base import BaseTask, TaskResult
from .members import GroupMembershipTask
from .compare import ExistenceComparisonTask
from .scope_convert import ScopeConversionTask
from .distribution import DistributionGroupEnableTask
from .teams import TeamsProvisioningTask
from .sharepoint import SharePointSiteReportTask
from .saml_certs import SamlCertificateTask

__all__ = [
    "BaseTask",
    "TaskResult",
    "GroupMembershipTask",
    "ExistenceComparisonTask",
    "ScopeConversionTask",
    "DistributionGroupEnableTask",
    "TeamsProvisioningTask",
    "SharePointSiteReportTask",
    "SamlCertificateTask",
]
