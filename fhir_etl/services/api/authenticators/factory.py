from fhir_etl.config import ConfigFhir
from fhir_etl.services.api.authenticators.authenticator import Authenticator
from fhir_etl.services.api.authenticators.null_authenticator import NullAuthenticator
from fhir_etl.services.api.authenticators.bearer_token_authenticator import (
    BearerTokenAuthenticator,
)


class AuthenticatorFactory:
    def __init__(self, config: ConfigFhir) -> None:
        self.__config = config

    def create_authenticator(self) -> Authenticator:
        auth_type = self.__config.authentication

        match auth_type:
            case "off":
                return NullAuthenticator()
            case "bearer":
                if not self.__config.bearer_token:
                    raise ValueError(
                        "bearer_token cannot be empty when authentication is 'bearer', please fix in app.conf or set FHIR_TOKEN"
                    )
                return BearerTokenAuthenticator(self.__config.bearer_token)
            case _:
                raise ValueError(
                    "incorrect value for authenticator, supported types are 'bearer' or 'off'. Please fix in app.conf"
                )
