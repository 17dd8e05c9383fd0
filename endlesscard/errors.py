class EndlessCardError(Exception):
    """Base error for the card service."""


class ExportError(EndlessCardError):
    def __init__(self, message="Failed to export card. Please try again."):
        super().__init__(message)
        self.message = message


class ImageLoadError(EndlessCardError):
    pass


class NotFoundError(EndlessCardError):
    pass


class PermissionDeniedError(EndlessCardError):
    pass


class AuthError(EndlessCardError):
    pass
