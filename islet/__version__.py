"""Version information for Islet."""

# Version components
VERSION_MAJOR = 0
VERSION_MINOR = 1
VERSION_PATCH = 0
VERSION_INFO = (VERSION_MAJOR, VERSION_MINOR, VERSION_PATCH)

# Dynamically construct version string
__version__ = f"{VERSION_MAJOR}.{VERSION_MINOR}.{VERSION_PATCH}"
__title__ = "islet"
__description__ = "State engine for a popover assistant surface with background processing and retry"
__author__ = "ghost-ng team"
__author_email__ = "team@ghost-ng.org"
__license__ = "MIT"
__url__ = "https://github.com/ghost-ng/ghost-ng"
__maintainer__ = "ghost-ng team"
__keywords__ = ["ai", "assistant", "desktop", "popover", "state-machine", "qt"]
