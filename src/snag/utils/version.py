from importlib.metadata import PackageNotFoundError, version

PACKAGE_NAME = "snag"


def get_version() -> str:
    """Installed package version, "dev" when running from a source checkout."""
    try:
        return version(PACKAGE_NAME)
    except PackageNotFoundError:
        return "dev"
