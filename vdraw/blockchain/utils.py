import os
import logging
import requests
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Ensure environment variables from .env are loaded when this module is imported.
load_dotenv()


def _gateway_url(fqdn: str | None = None) -> str:
    fqdn = fqdn or os.environ.get("BLOCKCHAIN_BASE_FQDN")
    if not fqdn:
        raise RuntimeError("Environment variable 'BLOCKCHAIN_BASE_FQDN' is not set")
    return "https://" + fqdn


def open_session(fqdn: str | None = None):
    """Open a requests session to the chain gateway and fetch CSRF.

    Parameters
    ----------
    fqdn : str, optional
        Gateway host. Falls back to ``BLOCKCHAIN_BASE_FQDN``.

    Returns
    -------
    tuple[requests.Session, str]
        The initialized session and CSRF token string.

    Raises
    ------
    RuntimeError
        If no gateway host is configured or the session cannot be
        established, including when the server returns no cookies or a CSRF
        token cannot be retrieved. Any underlying exception is re-raised as a
        ``RuntimeError`` with context.
    """
    url = _gateway_url(fqdn)

    session = requests.Session()
    try:
        response = session.get(url)
        response.raise_for_status()

        cookies = session.cookies
        if cookies:
            # Do not log cookie values; just count for diagnostics.
            logger.debug(f"Received {len(cookies)} cookies from gateway")
        else:
            raise RuntimeError("Gateway did not return any cookies")

        csrf_token = response.cookies.get("csrftoken")
        if csrf_token:
            logger.debug("CSRF token acquired")
            return session, csrf_token
        else:
            raise RuntimeError("Gateway did not return a CSRF token")

    except Exception as e:
        logger.critical(f"Error occurred while starting gateway session: {e}")
        raise RuntimeError(f"Failed to establish session: {e}") from e


def get_jwt_token(session: requests.Session, fqdn: str | None = None) -> str:
    """Obtain a JWT access token using the configured admin credentials.

    Raises
    ------
    RuntimeError
        If no gateway host is configured.
    requests.HTTPError
        If the login request fails.
    KeyError, ValueError
        If the response payload does not include an ``"access"`` field or is malformed.
    """
    credential = {
        "username": os.environ.get("BLOCKCHAIN_ADMIN_USERNAME"),
        "password": os.environ.get("BLOCKCHAIN_ADMIN_PASSWORD"),
    }
    # Never log raw credentials
    logger.debug("Attempting JWT login with configured admin username")

    url = _gateway_url(fqdn) + "/api/v1/auth/jwt-token"
    response = session.post(url, json=credential)
    response.raise_for_status()

    logger.debug("JWT token response received (content redacted)")

    return response.json()["access"]
