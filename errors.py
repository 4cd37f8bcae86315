"""
Error taxonomy for the API.

Services raise these; the handlers registered in main.py turn them into
`{"detail": message}` JSON responses with the matching status code.
"""


class PortfolioError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(PortfolioError):
    status_code = 400
    message = "Invalid request"


class Conflict(PortfolioError):
    status_code = 400
    message = "Already exists"


class NotFound(PortfolioError):
    status_code = 404
    message = "Not found"


class Unauthenticated(PortfolioError):
    status_code = 401
    message = "Authorization header missing"


class InvalidCredentials(Unauthenticated):
    message = "Invalid credentials"


class Forbidden(PortfolioError):
    status_code = 403
    message = "Forbidden"


class NotVerified(Forbidden):
    message = "Please verify your email first"


class InvalidToken(PortfolioError):
    status_code = 400
    message = "Invalid or expired token"


class ExpiredToken(InvalidToken):
    pass


class AlreadyVerified(PortfolioError):
    status_code = 400
    message = "Account already verified"


class UpstreamFailure(PortfolioError):
    status_code = 502
    message = "Upstream service failed"
