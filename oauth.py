import logging

from authlib.integrations.starlette_client import OAuth

from config import Settings

log = logging.getLogger(__name__)

GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"


def init_oauth(settings: Settings) -> OAuth:
    """
    Build the Authlib OAuth registry and register the Google provider.
    Returns an empty registry (no "google" client) when credentials are missing.
    """
    oauth = OAuth()
    if not settings.google_enabled:
        log.warning("Google OAuth not configured (missing client id/secret).")
        return oauth

    oauth.register(
        name="google",
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret.get_secret_value(),
        server_metadata_url=GOOGLE_METADATA_URL,
        client_kwargs={
            "scope": "openid email profile",
        },
    )
    return oauth
