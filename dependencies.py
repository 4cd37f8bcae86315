"""FastAPI dependencies: services from app.state and the auth guards."""
import logging

from fastapi import Depends, Request, Response

from config import Settings
from errors import Forbidden
from sessions import Identity, SessionStrategy

log = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_strategy(request: Request) -> SessionStrategy:
    return request.app.state.strategy


def get_accounts(request: Request):
    return request.app.state.accounts


def get_profiles(request: Request):
    return request.app.state.profiles


def get_admin(request: Request):
    return request.app.state.admin


def get_identity(
    request: Request,
    response: Response,
    strategy: SessionStrategy = Depends(get_strategy),
) -> Identity:
    identity = strategy.resolve(request, response)
    request.state.identity = identity
    return identity


def require_admin(
    identity: Identity = Depends(get_identity),
    settings: Settings = Depends(get_settings),
) -> Identity:
    if not settings.is_admin_email(identity.email):
        log.info("Rejected admin access for %s", identity.email)
        raise Forbidden("Admin access required")
    return identity
