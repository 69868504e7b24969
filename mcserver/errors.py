from __future__ import annotations


class MCServerError(RuntimeError):
    """Root of every failure the provisioning core reports."""

    kind = "Error"

    def __init__(self, message: str, *, instance_id: str | None = None) -> None:
        super().__init__(message)
        self.instance_id = instance_id

    def __str__(self) -> str:
        message = super().__str__()
        if self.instance_id:
            return f"{self.kind}: {message} (instance {self.instance_id})"
        return f"{self.kind}: {message}"


class LicenseNotAccepted(MCServerError):
    kind = "LicenseNotAccepted"


class DependencyFailed(MCServerError):
    kind = "DependencyFailed"


class CreateFailed(MCServerError):
    kind = "CreateFailed"


class StartTimeout(MCServerError):
    kind = "StartTimeout"


class DescribeFailed(MCServerError):
    kind = "DescribeFailed"


class NotFound(MCServerError):
    kind = "NotFound"


class StopFailed(MCServerError):
    kind = "StopFailed"


class TerminateFailed(MCServerError):
    kind = "TerminateFailed"


class ImageResolutionDegraded(MCServerError):
    # Never escapes the provider; reported as a warning before falling back.
    kind = "ImageResolutionDegraded"
