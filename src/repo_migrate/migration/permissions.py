"""Remediation hints for errors caused by missing permissions."""

from typing import Dict

from ..api.exceptions import MigrationError
from .exceptions import InsufficientPermissionsError

MANAGING_ACCESS_DOCS_URL = (
    'https://docs.github.com/en/migrations/using-github-enterprise-importer/'
    'preparing-to-migrate-with-github-enterprise-importer/'
    'managing-access-for-github-enterprise-importer'
)

# Trigger phrase -> remediation text, formatted with the target org
REMEDIATIONS: Dict[str, str] = {
    'not have the correct permissions to execute': (
        '. Please check that:\n'
        '  (a) you are a member of the `{org}` organization,\n'
        '  (b) you are an organization owner or you have been granted the migrator role and\n'
        '  (c) your personal access token has the correct scopes.\n'
        f'For more information, see {MANAGING_ACCESS_DOCS_URL}.'
    ),
}


def decorate_permission_error(error: Exception, org: str) -> Exception:
    """Return an error carrying remediation text when error matches the table.

    Already decorated errors and errors matching no trigger phrase are
    returned unchanged, so passing an error through several layers appends
    the text at most once.

    Args:
        error: Error raised while migrating
        org: Target organization named in the remediation text

    Returns:
        InsufficientPermissionsError chained to error, or error itself
    """
    if isinstance(error, InsufficientPermissionsError):
        return error
    if not isinstance(error, MigrationError):
        return error

    message = str(error)
    for trigger, remediation in REMEDIATIONS.items():
        if trigger in message:
            decorated = InsufficientPermissionsError(message + remediation.format(org=org))
            decorated.__cause__ = error
            return decorated

    return error
