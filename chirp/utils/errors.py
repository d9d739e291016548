# chirp/utils/errors.py


class ChatError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(ChatError):
    status_code = 400


class AuthError(ChatError):
    status_code = 401


class NotFoundError(ChatError):
    status_code = 404


class StorageError(ChatError):
    status_code = 500
