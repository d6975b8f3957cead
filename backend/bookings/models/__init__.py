from bookings.models.job import Job, TranslatorJobRel
from bookings.models.language import Language
from bookings.models.user import User, UserLanguage, UsersBlacklist

__all__ = [
    "Job",
    "TranslatorJobRel",
    "Language",
    "User",
    "UserLanguage",
    "UsersBlacklist",
]
