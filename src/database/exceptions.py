"""
Custom exception hierarchy for DynamoDB operations.

This module defines storage-level exceptions used by the database module
to handle various failure scenarios in a granular, testable way.
"""


class DynamoDBException(Exception):
    """
    Base exception for all DynamoDB-related errors.

    Used for recoverable and unrecoverable errors from DynamoDB operations.
    """

    pass


class ConditionFailedError(DynamoDBException):
    """
    Raised when a conditional write is rejected by DynamoDB.

    Repositories express state guards (allowed from-statuses, expected version,
    reminder flag claims) as condition expressions. Callers re-read the item to
    decide which guard failed.
    """

    pass


class ThrottlingError(DynamoDBException):
    """
    Raised when DynamoDB returns throttling errors after retry exhaustion.

    This indicates the database is overloaded and requests are being throttled.
    Callers should implement backoff and retry logic at a higher level.
    """

    pass


class NetworkError(DynamoDBException):
    """
    Raised when network-level failures occur (connection timeout, DNS failure, etc.).

    This is unrecoverable at the repository level and indicates infrastructure issues.
    """

    pass


class PermissionError(DynamoDBException):
    """
    Raised when IAM permissions are insufficient for the operation.

    Indicates a configuration/security issue that must be fixed by an administrator.
    """

    pass
