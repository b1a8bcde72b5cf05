from typing import Any
from fhir_etl.services.api.authenticators.authenticator import Authenticator


class BearerTokenAuthenticator(Authenticator):
    """
    Supplies a pre-issued bearer token. How the token was obtained is not our concern.
    """
    def __init__(self, token: str) -> None:
        if not token or not token.strip():
            raise ValueError("bearer token cannot be empty")
        self.__token = token.strip()

    def get_authentication_header(self) -> str:
        return f"Bearer {self.__token}"

    def get_auth(self) -> Any:
        return None
