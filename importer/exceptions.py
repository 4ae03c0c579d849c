class ImporterError(Exception):
    """Base class for errors raised by the batch jobs."""


class ConfigurationError(ImporterError):
    """
    Raised before any batch work starts when a job cannot be started: the
    upstream API key is missing, the options are invalid or a job of the same
    kind is already active.
    """


class JobStateError(ImporterError):
    """
    Raised when an operator action does not apply to the job's current
    status, for example pausing a job which is not running, or when the job
    does not exist.
    """


class UpstreamError(ImporterError):
    """
    Raised when the metadata API returns a non-success response or cannot be
    reached at all.
    """

    def __init__(self, message, status_code=None, url=None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class RateLimitExceeded(UpstreamError):
    """
    Raised when the API keeps answering 429 after the configured number of
    cooldown retries.
    """


class AssetDownloadFailure(ImporterError):
    """
    Raised when an image could not be downloaded or did not decode as an
    image. The fetcher reports it to callers as a failed download.
    """
