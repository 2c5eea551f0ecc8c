# https://fastapi.tiangolo.com/advanced/settings/#pydantic-settings

import logging.config
import re
from typing import Any

import sentry_sdk
from pydantic_settings import BaseSettings, SettingsConfigDict


def sentry_filter_transactions(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """
    Filter transactions to be sent to Sentry.
    This function prevents transactions that interact with the identity provider from being sent to Sentry, since
    they carry authorization codes and assertions.

    :param event: The event data.
    :param hint: A dictionary of extra data passed to the function.
    :return: The event data if it should be sent to Sentry, otherwise None.
    """
    values = event.get("breadcrumbs", {}).get("values") or [{}]
    data_url = values[0].get("data", {}).get("url") or None
    if data_url and re.search(r"https://login\.microsoftonline\.com", data_url):
        return None
    return event


class Settings(BaseSettings):
    """
    Each setting has a corresponding uppercase environment variable.

    .. seealso:: `Settings Management <https://docs.pydantic.dev/latest/concepts/pydantic_settings/#usage>`__
    """

    #: The name of the deployment environment. "production" disables the mock identity driver.
    environment: str = "development"
    #: The `logging level <https://docs.python.org/3/library/logging.html#levels>`__ of the root logger.
    log_level: int | str = logging.INFO
    #: The version reported by ``/info``.
    version: str = "0.1.0"
    #: PostgreSQL connection string.
    database_url: str = "postgresql:///shelter_grants?application_name=shelter_grants"
    #: Connection string that overrides ``DATABASE_URL`` (the test suite drops all tables).
    test_database_url: str = ""

    # Security

    #: The secret key with which session tokens and login state are signed.
    secret_key: str = "change-me"
    #: The number of minutes for which a session token is valid.
    session_token_minutes: int = 480

    # Authentication

    #: The identity driver: "mock", "saml" or "entra-id".
    #:
    #: .. seealso:: :func:`app.auth.build_authenticator`
    auth_driver: str = "mock"
    #: The URL to which the identity provider returns. Derived from ``API_URL`` if empty.
    auth_callback_url: str = ""
    #: The public base URL of this API.
    api_url: str = "http://localhost:8000"
    #: The base URL of the frontend (also for CORS).
    frontend_url: str = "http://localhost:5173"

    #: Microsoft Entra ID tenant ID.
    entra_tenant_id: str = ""
    #: Microsoft Entra ID application (client) ID.
    entra_client_id: str = ""
    #: Microsoft Entra ID client secret.
    entra_client_secret: str = ""
    #: The app role that grants the reviewer role.
    entra_reviewer_role: str = "Reviewer"
    #: The app role that grants the applicant role.
    entra_applicant_role: str = "Applicant"
    #: The ID token claim that holds the external account identifier.
    entra_account_claim: str = "oid"

    #: SAML identity provider entity ID.
    saml_idp_entity_id: str = ""
    #: SAML identity provider single sign-on URL.
    saml_idp_sso_url: str = ""
    #: SAML identity provider single logout URL.
    saml_idp_slo_url: str = ""
    #: SAML identity provider signing certificate (base64, no PEM armor).
    saml_idp_x509_cert: str = ""
    #: SAML service provider entity ID.
    saml_sp_entity_id: str = "shelter-grants"
    #: The SAML attribute that holds the roles.
    saml_roles_attribute: str = "roles"
    #: The SAML attribute that holds the external account identifier.
    saml_account_attribute: str = "accountId"

    # Applications

    #: The prefix of reference numbers, like ``WSP-2026-0001``.
    reference_number_prefix: str = "WSP"
    #: The maximum size of one uploaded document.
    max_file_size_mb: int = 25
    #: The maximum total size of the documents of one application.
    max_application_size_mb: int = 100

    # Localization

    #: The language of user-facing messages.
    language: str = "en"

    # Third-party services

    #: Sentry DSN.
    sentry_dsn: str = ""

    model_config = SettingsConfigDict(env_file=".env")

    @property
    def callback_url(self) -> str:
        if self.auth_callback_url:
            return self.auth_callback_url
        return f"{self.api_url.rstrip('/')}/auth/callback"


app_settings = Settings()

logging.config.dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "format": "%(asctime)s %(levelname)s [%(name)s:%(lineno)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
            },
        },
        "loggers": {
            "": {
                "handlers": ["console"],
                "level": app_settings.log_level,
            },
        },
    }
)

if app_settings.sentry_dsn:
    sentry_sdk.init(
        dsn=app_settings.sentry_dsn,
        before_send=sentry_filter_transactions,
        # Set traces_sample_rate to 1.0 to capture 100% of transactions for performance monitoring.
        traces_sample_rate=1.0,
    )
