import requests
from packaging import version

from snag.utils.constants import GITHUB_RELEASES_URL
from snag.utils.logger import logger

# Seconds to wait for the GitHub API
VERSION_CHECK_TIMEOUT = 10


def get_latest_version() -> str | None:
    """
    Latest released version from GitHub, without the leading "v".

    Returns:
        The version string, or None when it could not be fetched.
    """
    try:
        response = requests.get(GITHUB_RELEASES_URL, timeout=VERSION_CHECK_TIMEOUT)
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.Timeout:
        logger.debug("Timed out checking for updates on GitHub.")
        return None
    except requests.exceptions.RequestException as e:
        logger.debug(f"Could not check for updates on GitHub: {e}")
        return None
    except ValueError as e:
        logger.debug(f"Unexpected response from GitHub: {e}")
        return None

    tag_name = data.get("tag_name") if isinstance(data, dict) else None
    if not tag_name:
        logger.debug("Could not find tag_name in GitHub response.")
        return None
    return tag_name.removeprefix("v")


def is_update_available(current: str, latest: str | None) -> bool:
    if not latest:
        return False
    try:
        return version.parse(latest) > version.parse(current)
    except version.InvalidVersion:
        # Dev builds and odd tags: any difference counts
        return latest != current
