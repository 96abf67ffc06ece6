from meetingdesk.config import FrontendConfig, load_frontend_config
from meetingdesk.home import MeetingDeskPaths, ensure_meetingdesk_layout, resolve_meetingdesk_home

__version__ = "0.1.0"

__all__ = [
    "FrontendConfig",
    "MeetingDeskPaths",
    "__version__",
    "ensure_meetingdesk_layout",
    "load_frontend_config",
    "resolve_meetingdesk_home",
]
