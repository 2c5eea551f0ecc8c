import logging
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode, urlsplit

import jwt
import requests
from pydantic import BaseModel, Field

from app.exceptions import AuthenticationError
from app.models import Role
from app.settings import Settings, app_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
STATE_AUDIENCE = "login-state"
SESSION_AUDIENCE = "session"
REQUEST_TIMEOUT = 10


class Principal(BaseModel):
    """The authenticated caller, passed explicitly into each operation."""

    #: The identity provider's identifier for the user.
    id: str
    roles: list[Role] = Field(default_factory=list)
    #: The identity provider's identifier for the user's organization account, if any.
    #:
    #: .. seealso:: :attr:`app.models.Organization.external_account_id`
    external_account_id: str | None = None
    email: str | None = None
    name: str | None = None

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_reviewer(self) -> bool:
        return self.has_role(Role.REVIEWER)

    @property
    def is_applicant(self) -> bool:
        return self.has_role(Role.APPLICANT)


class CallbackRequest(BaseModel):
    """The parts of the identity provider's callback request that drivers read."""

    url: str
    query: dict[str, str] = Field(default_factory=dict)
    form: dict[str, str] = Field(default_factory=dict)

    def get(self, key: str) -> str | None:
        return self.form.get(key) or self.query.get(key)


def map_roles(claimed: list[str], reviewer_role: str, applicant_role: str) -> list[Role]:
    """
    Map the identity provider's role names to portal roles.

    A user without a recognized role is an applicant, since external organizations' users are typically issued no
    role claims.
    """
    lowered = {role.lower() for role in claimed}
    roles = []
    if reviewer_role.lower() in lowered:
        roles.append(Role.REVIEWER)
    if applicant_role.lower() in lowered or not roles:
        roles.append(Role.APPLICANT)
    return roles


def create_session_token(principal: Principal, settings: Settings = app_settings) -> str:
    """
    Sign a session token that carries the principal.

    :param principal: The authenticated principal.
    :return: The encoded token, to be sent as a Bearer token.
    """
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {
            "sub": principal.id,
            "aud": SESSION_AUDIENCE,
            "iat": now,
            "exp": now + timedelta(minutes=settings.session_token_minutes),
            "roles": [str(role) for role in principal.roles],
            "account": principal.external_account_id,
            "email": principal.email,
            "name": principal.name,
        },
        settings.secret_key,
        algorithm=ALGORITHM,
    )


def decode_session_token(token: str, settings: Settings = app_settings) -> Principal:
    """
    Verify a session token and return its principal.

    :raise AuthenticationError: If the token is malformed, tampered with or expired.
    """
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM], audience=SESSION_AUDIENCE)
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid or expired session token") from e

    try:
        return Principal(
            id=claims["sub"],
            roles=claims.get("roles", []),
            external_account_id=claims.get("account"),
            email=claims.get("email"),
            name=claims.get("name"),
        )
    except (KeyError, ValueError) as e:
        raise AuthenticationError("Invalid session token claims") from e


def create_state(settings: Settings = app_settings) -> tuple[str, str]:
    """Return a signed, short-lived login state and the nonce it carries."""
    nonce = secrets.token_urlsafe(16)
    state = jwt.encode(
        {
            "aud": STATE_AUDIENCE,
            "nonce": nonce,
            "exp": datetime.now(timezone.utc) + timedelta(minutes=10),
        },
        settings.secret_key,
        algorithm=ALGORITHM,
    )
    return state, nonce


def verify_state(state: str | None, settings: Settings = app_settings) -> str:
    """Verify a login state and return its nonce."""
    if not state:
        raise AuthenticationError("Missing login state")
    try:
        return jwt.decode(state, settings.secret_key, algorithms=[ALGORITHM], audience=STATE_AUDIENCE)["nonce"]
    except (jwt.InvalidTokenError, KeyError) as e:
        raise AuthenticationError("Invalid login state") from e


class BaseAuthenticator(ABC):
    """
    An identity driver. One driver is built at startup.

    .. seealso:: :func:`app.auth.build_authenticator`
    """

    #: The value of the ``AUTH_DRIVER`` setting that selects this driver.
    name: str

    def __init__(self, settings: Settings):
        self.settings = settings

    @abstractmethod
    def login(self) -> str:
        """Return the URL to which to redirect the browser to start a login."""

    @abstractmethod
    def callback(self, request: CallbackRequest) -> Principal:
        """
        Verify the identity provider's response and return the principal.

        :raise AuthenticationError: If the response can't be trusted.
        """

    def logout(self, principal: Principal | None = None) -> str | None:
        """Return the URL to which to redirect the browser to end the identity provider's session, if any."""
        return None

    def get_user(self, token: str) -> Principal:
        """Return the principal of a session token issued after :meth:`callback`."""
        return decode_session_token(token, self.settings)

    def is_configured(self) -> bool:
        return True


class MockAuthenticator(BaseAuthenticator):
    """Authenticate as one of a fixed list of users, without an identity provider. For development only."""

    name = "mock"

    users = [
        Principal(
            id="mock-applicant-1",
            email="jdoe@safehaven.org",
            name="Jane Doe",
            roles=[Role.APPLICANT],
            external_account_id="MA-ORG-10001",
        ),
        Principal(
            id="mock-applicant-new",
            email="mchen@newstart.org",
            name="Maria Chen",
            roles=[Role.APPLICANT],
            external_account_id="MA-ORG-10099",
        ),
        Principal(
            id="mock-cfs-admin",
            email="admin.cfs@gov.ab.ca",
            name="Sarah Thompson",
            roles=[Role.REVIEWER],
        ),
    ]

    def login(self) -> str:
        return f"{self.settings.callback_url}?{urlencode({'user_index': 0})}"

    def callback(self, request: CallbackRequest) -> Principal:
        value = request.get("user_index") or "0"
        if not value.isdigit():
            raise AuthenticationError("Invalid mock user", {"user_index": value})
        return self.authenticate(int(value))

    def authenticate(self, user_index: int = 0, **overrides: Any) -> Principal:
        """
        Return a mock user, falling back to the first user if the index is out of range.

        :param overrides: Principal fields to override, like ``email`` or ``external_account_id``.
        """
        if not 0 <= user_index < len(self.users):
            user_index = 0
        user = self.users[user_index]
        if overrides := {key: value for key, value in overrides.items() if value is not None}:
            return user.model_copy(update=overrides)
        return user


class EntraIdAuthenticator(BaseAuthenticator):
    """
    Authenticate with Microsoft Entra ID, using the OpenID Connect authorization code flow.

    The ID token is verified against the tenant's published signing keys.
    """

    name = "entra-id"

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.authority = f"https://login.microsoftonline.com/{settings.entra_tenant_id}"
        self.jwks_client = jwt.PyJWKClient(f"{self.authority}/discovery/v2.0/keys")

    def is_configured(self) -> bool:
        return bool(
            self.settings.entra_tenant_id and self.settings.entra_client_id and self.settings.entra_client_secret
        )

    def login(self) -> str:
        state, nonce = create_state(self.settings)
        query = urlencode(
            {
                "client_id": self.settings.entra_client_id,
                "response_type": "code",
                "redirect_uri": self.settings.callback_url,
                "response_mode": "query",
                "scope": "openid profile email",
                "state": state,
                "nonce": nonce,
            }
        )
        return f"{self.authority}/oauth2/v2.0/authorize?{query}"

    def callback(self, request: CallbackRequest) -> Principal:
        if error := request.get("error"):
            raise AuthenticationError("Identity provider returned an error", {"error": error})

        nonce = verify_state(request.get("state"), self.settings)
        code = request.get("code")
        if not code:
            raise AuthenticationError("Missing authorization code")

        response = requests.post(
            f"{self.authority}/oauth2/v2.0/token",
            data={
                "client_id": self.settings.entra_client_id,
                "client_secret": self.settings.entra_client_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.settings.callback_url,
                "scope": "openid profile email",
            },
            timeout=REQUEST_TIMEOUT,
        )
        if response.status_code != 200:
            raise AuthenticationError("Token exchange failed", {"status_code": response.status_code})

        id_token = response.json().get("id_token")
        if not id_token:
            raise AuthenticationError("Token response has no ID token")

        claims = self.verify_id_token(id_token)
        if claims.get("nonce") != nonce:
            raise AuthenticationError("ID token nonce mismatch")

        return Principal(
            id=claims.get("oid") or claims["sub"],
            roles=map_roles(
                claims.get("roles", []), self.settings.entra_reviewer_role, self.settings.entra_applicant_role
            ),
            external_account_id=claims.get(self.settings.entra_account_claim),
            email=claims.get("email") or claims.get("preferred_username"),
            name=claims.get("name"),
        )

    def verify_id_token(self, id_token: str) -> dict[str, Any]:
        try:
            signing_key = self.jwks_client.get_signing_key_from_jwt(id_token)
            return jwt.decode(
                id_token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.settings.entra_client_id,
                issuer=f"{self.authority}/v2.0",
            )
        except jwt.PyJWTError as e:
            raise AuthenticationError("Invalid ID token") from e

    def logout(self, principal: Principal | None = None) -> str | None:
        query = urlencode({"post_logout_redirect_uri": self.settings.frontend_url})
        return f"{self.authority}/oauth2/v2.0/logout?{query}"


class SamlAuthenticator(BaseAuthenticator):
    """
    Authenticate with a SAML 2.0 identity provider.

    Requires the ``saml`` extra (``python3-saml``).
    """

    name = "saml"

    def is_configured(self) -> bool:
        return bool(self.settings.saml_idp_entity_id and self.settings.saml_idp_sso_url)

    def saml_settings(self) -> dict[str, Any]:
        # https://github.com/SAML-Toolkits/python3-saml#settings
        return {
            "strict": True,
            "sp": {
                "entityId": self.settings.saml_sp_entity_id,
                "assertionConsumerService": {
                    "url": self.settings.callback_url,
                    "binding": "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST",
                },
            },
            "idp": {
                "entityId": self.settings.saml_idp_entity_id,
                "singleSignOnService": {
                    "url": self.settings.saml_idp_sso_url,
                    "binding": "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect",
                },
                "singleLogoutService": {
                    "url": self.settings.saml_idp_slo_url,
                    "binding": "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect",
                },
                "x509cert": self.settings.saml_idp_x509_cert,
            },
        }

    def _auth(self, request: CallbackRequest) -> Any:
        from onelogin.saml2.auth import OneLogin_Saml2_Auth

        url = urlsplit(request.url)
        return OneLogin_Saml2_Auth(
            {
                "https": "on" if url.scheme == "https" else "off",
                "http_host": url.netloc,
                "script_name": url.path,
                "get_data": request.query,
                "post_data": request.form,
            },
            self.saml_settings(),
        )

    def login(self) -> str:
        state, _ = create_state(self.settings)
        return self._auth(CallbackRequest(url=self.settings.callback_url)).login(return_to=state)

    def callback(self, request: CallbackRequest) -> Principal:
        verify_state(request.get("RelayState"), self.settings)

        auth = self._auth(request)
        auth.process_response()
        if errors := auth.get_errors():
            raise AuthenticationError(
                "Invalid SAML response", {"errors": errors, "reason": auth.get_last_error_reason()}
            )
        if not auth.is_authenticated():
            raise AuthenticationError("SAML response is not authenticated")

        attributes: dict[str, list[str]] = auth.get_attributes()
        account = attributes.get(self.settings.saml_account_attribute) or [None]
        email = attributes.get("email") or [None]
        name = attributes.get("name") or attributes.get("displayName") or [None]

        return Principal(
            id=auth.get_nameid(),
            roles=map_roles(
                attributes.get(self.settings.saml_roles_attribute, []),
                self.settings.entra_reviewer_role,
                self.settings.entra_applicant_role,
            ),
            external_account_id=account[0],
            email=email[0],
            name=name[0],
        )

    def logout(self, principal: Principal | None = None) -> str | None:
        if not self.settings.saml_idp_slo_url:
            return None
        return self._auth(CallbackRequest(url=self.settings.callback_url)).logout(
            return_to=self.settings.frontend_url, name_id=principal.id if principal else None
        )


DRIVERS: dict[str, type[BaseAuthenticator]] = {
    MockAuthenticator.name: MockAuthenticator,
    SamlAuthenticator.name: SamlAuthenticator,
    EntraIdAuthenticator.name: EntraIdAuthenticator,
}


def build_authenticator(settings: Settings = app_settings) -> BaseAuthenticator:
    """
    Build the identity driver selected by the ``AUTH_DRIVER`` setting.

    :raise ValueError: If the driver is unknown, or if the mock driver is selected in production.
    """
    try:
        driver = DRIVERS[settings.auth_driver](settings)
    except KeyError:
        raise ValueError(
            f"Unsupported auth driver: {settings.auth_driver}. Valid options: {', '.join(DRIVERS)}"
        ) from None

    if driver.name == MockAuthenticator.name and settings.environment == "production":
        raise ValueError("The mock auth driver can't be used in production")
    if not driver.is_configured():
        logger.warning("The %s auth driver is not fully configured", driver.name)

    return driver
