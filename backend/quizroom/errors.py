"""Error taxonomy shared by the store adapters, the quiz services and the API."""


class QuizError(Exception):
    """Base class for every error the quiz core raises on purpose."""

    status_code = 500

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {'error': self.message, 'type': self.__class__.__name__}


class ValidationError(QuizError):
    """Malformed input or a transition that is not allowed right now."""

    status_code = 400


class DuplicateCode(ValidationError):
    status_code = 409

    def __init__(self, code: str):
        super().__init__(f'Room code {code} is already in use')
        self.code = code


class NotFoundError(QuizError):
    """A room, player, profile or question disappeared."""

    status_code = 404


class TransientStoreError(QuizError):
    """Network or subscription failure talking to the store."""

    status_code = 503
