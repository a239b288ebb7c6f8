class PipelineError(Exception):
    """Base class for failures that abort a single transcoding job."""


class FetchError(PipelineError):
    pass


class FetchTimeout(FetchError):
    pass


class TranscodeError(PipelineError):
    def __init__(self, message, stderr=""):
        super().__init__(message)
        self.stderr = stderr


class UploadError(PipelineError):
    pass


class RecordPersistError(PipelineError):
    pass


class AuthError(Exception):
    pass


class ConfigError(Exception):
    pass
