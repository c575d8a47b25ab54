"""Generic helpers for manipulating K8s objects, via lightkube."""

import logging

from lightkube.core.exceptions import ApiError
from lightkube.generic_resource import GenericGlobalResource

log = logging.getLogger(__name__)

# Conflicts, throttling and server side errors
TRANSIENT_STATUS_CODES = {409, 429, 500, 502, 503, 504}


def get_name(res: GenericGlobalResource) -> str:
    """Return the name from generic lightkube resource.

    Args:
        res: The resource to get it's name from metadata.name

    Raises:
        ValueError: if the object doesn't have metadata or metadata.name

    Returns:
        The name of the object from its metadata.
    """
    if not res.metadata:
        raise ValueError("Couldn't detect name, object has no metadata: %s" % res)

    if not res.metadata.name:
        raise ValueError("Couldn't detect name, object has no name field: %s" % res)

    return res.metadata.name


def is_transient_api_error(err: BaseException) -> bool:
    """Check if an exception is an ApiError worth retrying.

    Args:
        err: The exception raised by the lightkube client.

    Returns:
        True if the error is an ApiError with a conflict, throttling or server error code.
    """
    if not isinstance(err, ApiError):
        return False

    if err.status.code in TRANSIENT_STATUS_CODES:
        log.info("Got transient API error %s, retrying.", err.status.code)
        return True

    return False
