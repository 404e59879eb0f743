"""Where jobctl finds the admin API"""

import os

from ..client import DEFAULT_API_URL


def api_url() -> str:
    return os.environ.get("JOBCTL_API_URL", DEFAULT_API_URL)
