from __future__ import annotations


class BrokerError(Exception):
    """Base error for the service broker."""


class InstanceAlreadyExistsError(BrokerError):
    """A live instance with this id is already tracked."""

    def __init__(self, message: str = "instance already exists") -> None:
        super().__init__(message)


class InstanceDoesNotExistError(BrokerError):
    """No live instance record matches the id."""

    def __init__(self, message: str = "instance does not exist") -> None:
        super().__init__(message)


class InstanceLimitExceededError(BrokerError):
    """The broker already tracks its configured maximum of live instances."""

    def __init__(self, message: str = "instance limit for this service has been reached") -> None:
        super().__init__(message)


class BindingAlreadyExistsError(BrokerError):
    """A live binding with this (instance, binding) id pair is already tracked."""

    def __init__(self, message: str = "binding already exists") -> None:
        super().__init__(message)


class BindingDoesNotExistError(BrokerError):
    """No live binding record matches the (instance, binding) id pair."""

    def __init__(self, message: str = "binding does not exist") -> None:
        super().__init__(message)


class AsyncRequiredError(BrokerError):
    """The provider works asynchronously but the caller does not accept incomplete results."""

    def __init__(self, message: str = "This service plan requires client support for asynchronous service operations.") -> None:
        super().__init__(message)


class PlanChangeNotSupportedError(BrokerError):
    """Plan updates are not offered by this broker."""

    def __init__(self, message: str = "The requested plan migration cannot be performed") -> None:
        super().__init__(message)


class RawParametersInvalidError(BrokerError):
    """Caller-supplied parameters are not a JSON object."""

    def __init__(self, message: str = "The format of the parameters is not valid JSON") -> None:
        super().__init__(message)


class AppGuidRequiredError(BrokerError):
    """The service only binds to applications and no app GUID was supplied."""

    def __init__(self, message: str = "app_guid is a required field but was not provided") -> None:
        super().__init__(message)


class ServiceNotFoundError(BrokerError):
    """The requested service id is not in the catalog."""


class PlanNotFoundError(BrokerError):
    """The requested plan id is not offered by the service."""


class SynchronousPollError(BrokerError):
    """LastOperation was requested for a service that never works asynchronously."""


class LegacyPlanError(BrokerError):
    """The instance or request references a legacy plan that must be upgraded first."""


class ProviderError(BrokerError):
    """A backend provider call failed."""


class ServiceUnavailableError(ProviderError):
    """The backend reported it is temporarily unavailable; the caller should poll again."""

    status_code = 503


class OrphanedResourceError(BrokerError):
    """The backend changed but the record store write failed; an operator must clean up."""


class CredentialError(BrokerError):
    """Binding credentials could not be minted or destroyed."""


class CatalogValidationError(BrokerError):
    """The catalog definition is missing required fields or is inconsistent."""


class DatabaseError(BrokerError):
    """Database layer failure."""


class ConstraintViolationError(DatabaseError):
    """An insert or update broke a unique constraint."""


class RecordNotFoundError(DatabaseError):
    """A write targeted a record that does not exist."""


class MigrationError(DatabaseError):
    """The schema cannot be brought up to date by this build."""
