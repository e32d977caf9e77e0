from orderdesk.directory.models import Profile
from orderdesk.directory.service import ProfileDirectory, profile_directory

__all__ = ["Profile", "ProfileDirectory", "profile_directory"]
