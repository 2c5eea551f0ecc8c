import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from app import auth, dependencies, parsers, serializers, util
from app.exceptions import AuthenticationError
from app.i18n import _
from app.settings import app_settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/auth/login",
    tags=[util.Tags.authentication],
)
async def login(authenticator: auth.BaseAuthenticator = Depends(dependencies.get_authenticator)) -> RedirectResponse:
    """
    Redirect the browser to the identity provider.
    """
    return RedirectResponse(authenticator.login(), status_code=status.HTTP_302_FOUND)


@router.api_route(
    "/auth/callback",
    methods=["GET", "POST"],
    tags=[util.Tags.authentication],
)
async def callback(
    request: Request,
    authenticator: auth.BaseAuthenticator = Depends(dependencies.get_authenticator),
) -> RedirectResponse:
    """
    Verify the identity provider's response, and redirect the browser to the frontend with a session token.

    The token is in the URL fragment, which browsers don't send to servers.
    """
    form = {}
    if request.method == "POST":
        form = {key: value for key, value in (await request.form()).items() if isinstance(value, str)}

    try:
        principal = authenticator.callback(
            auth.CallbackRequest(url=str(request.url), query=dict(request.query_params), form=form)
        )
    except AuthenticationError as e:
        logger.warning("Authentication failed: %s %s", e.message, e.data)
        return RedirectResponse(
            f"{app_settings.frontend_url}/login?{urlencode({'error': 'auth_failed'})}",
            status_code=status.HTTP_302_FOUND,
        )

    token = auth.create_session_token(principal)
    logger.info("User %s logged in with the %s auth driver", principal.id, authenticator.name)
    return RedirectResponse(
        f"{app_settings.frontend_url}/auth/callback#{urlencode({'access_token': token})}",
        status_code=status.HTTP_302_FOUND,
    )


@router.post(
    "/auth/mock-login",
    tags=[util.Tags.authentication],
)
async def mock_login(
    payload: parsers.MockLogin,
    authenticator: auth.BaseAuthenticator = Depends(dependencies.get_authenticator),
) -> serializers.LoginResponse:
    """
    Log in as a mock user, without a redirect. Available only with the mock auth driver.
    """
    if not isinstance(authenticator, auth.MockAuthenticator):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_("Mock login is only available with the mock auth driver"),
        )

    principal = authenticator.authenticate(
        payload.user_index,
        email=payload.email,
        name=payload.display_name,
        external_account_id=payload.external_account_id,
    )
    return serializers.LoginResponse(access_token=auth.create_session_token(principal), user=principal)


@router.post(
    "/auth/logout",
    tags=[util.Tags.authentication],
)
async def logout(
    principal: auth.Principal | None = Depends(dependencies.get_optional_principal),
    authenticator: auth.BaseAuthenticator = Depends(dependencies.get_authenticator),
) -> dict[str, str | None]:
    """
    Return the identity provider's logout URL, if any. Session tokens are stateless, so the client discards its token.
    """
    return {"detail": _("Logged out successfully"), "redirect_url": authenticator.logout(principal)}


@router.get(
    "/auth/me",
    tags=[util.Tags.authentication],
)
async def me(principal: auth.Principal = Depends(dependencies.get_principal)) -> auth.Principal:
    return principal


@router.get(
    "/auth/status",
    tags=[util.Tags.authentication],
)
async def auth_status(
    principal: auth.Principal | None = Depends(dependencies.get_optional_principal),
    authenticator: auth.BaseAuthenticator = Depends(dependencies.get_authenticator),
) -> serializers.AuthStatusResponse:
    return serializers.AuthStatusResponse(
        driver=authenticator.name,
        configured=authenticator.is_configured(),
        authenticated=principal is not None,
        user=principal,
    )
