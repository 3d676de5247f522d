"""Domain-specific exceptions for tiers-core.

This module defines custom exceptions that are part of the public API.
All exceptions inherit from TiersAPIError for easy catching.
"""


class TiersAPIError(Exception):
    """Base exception for all tiers-core errors.

    Users can catch this exception to handle any error raised by the
    sales sources, the config store or the summary pipeline.
    """

    pass


class ConfigError(TiersAPIError):
    """Raised when there is a configuration error.

    This exception is raised when:
    - A tiers config file cannot be read or parsed
    - Required environment settings for a data source are missing
    """

    pass


class DataQualityError(TiersAPIError):
    """Raised when a data source returns rows the pipeline cannot use.

    This exception is raised when:
    - A sales source returns no row list, or repeats a product id
    - An orders file does not have a recognized layout
    """

    pass


class ETLError(TiersAPIError):
    """Raised when a pipeline stage fails."""

    pass


class ExtractionError(ETLError):
    """Raised when data extraction from the source system fails.

    This exception is raised when:
    - The Shopify Admin API keeps throttling after all retries
    - The API returns GraphQL errors or a non-2xx status
    - The tiering-table query fails
    """

    pass
