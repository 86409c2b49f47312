from typing import Optional


class FieldImpactError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(FieldImpactError):
    pass


class SchemaFormatError(FieldImpactError):
    """A raw describe payload (or part of it) does not have the expected shape."""


class SchemaGatewayError(FieldImpactError):
    def __init__(self, status_code: int, detail: str, error_code: Optional[str] = None):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.error_code = error_code or ("NETWORK_ERROR" if status_code == 0 else "API_ERROR")


class AuthError(FieldImpactError):
    def __init__(self, message: str, status_code: int = 401, error_code: str = "AUTH_FAILED"):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class AlreadyLoadingError(FieldImpactError):
    def __init__(self, user_id: str):
        super().__init__(f"Metadata is already loading for user {user_id}")
        self.user_id = user_id


class ObjectNotFoundError(FieldImpactError):
    def __init__(self, object_name: str):
        super().__init__(f"No relationships found for object {object_name}")
        self.object_name = object_name
