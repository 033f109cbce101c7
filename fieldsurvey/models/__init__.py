from fieldsurvey.models.asset import Asset
from fieldsurvey.models.building import Building
from fieldsurvey.models.business import Business
from fieldsurvey.models.family import Family
from fieldsurvey.models.individual import Individual
from fieldsurvey.models.survey_response import SurveyResponse
from fieldsurvey.models.sync_checkpoint import SyncCheckpoint
from fieldsurvey.models.ward import Ward

__all__ = [
    "Asset",
    "Building",
    "Business",
    "Family",
    "Individual",
    "SurveyResponse",
    "SyncCheckpoint",
    "Ward",
]
