from abc import ABC, abstractmethod
from typing import Any


class Authenticator(ABC):
    """
    Abstract base class for credential suppliers.

    The FHIR client only needs two things from a supplier: a value for the
    HTTP `Authorization` header, and optionally an auth object that can be
    handed to ``requests``. An empty header value means the request is sent
    unauthenticated.
    """

    @abstractmethod
    def get_authentication_header(self) -> str:
        """
        Returns an authentication header value as a string.

        Returns:
            str: The formatted header string, e.g. ``"Bearer <token>"``, or an
            empty string when no credential is available.
        """
        ...

    @abstractmethod
    def get_auth(self) -> Any:
        """
        Return authentication data in a library-specific format, e.g. for the
        ``auth`` parameter of ``requests``. May be None.
        """
        ...
