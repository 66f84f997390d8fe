class AppError(Exception):
    """Expected failure carrying the HTTP status and a machine readable code."""

    def __init__(self, message: str, status_code: int = 400, code: str = 'BAD_REQUEST', details=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details


FIREBASE_AUTH_MESSAGES = {
    'UserNotFoundError': 'User not found',
    'EmailAlreadyExistsError': 'Email already in use',
    'PhoneNumberAlreadyExistsError': 'Phone number already in use',
    'UserDisabledError': 'This account has been disabled',
    'InvalidIdTokenError': 'Invalid token',
    'ExpiredIdTokenError': 'Token expired',
    'RevokedIdTokenError': 'Token has been revoked',
    'CertificateFetchError': 'Could not verify token',
    'TooManyAttemptsTryLaterError': 'Too many requests. Please try again later.',
}


def firebase_auth_message(error: Exception) -> str:
    """Friendly text for a firebase_admin.auth error class."""
    for klass in type(error).__mro__:
        if klass.__name__ in FIREBASE_AUTH_MESSAGES:
            return FIREBASE_AUTH_MESSAGES[klass.__name__]
    return 'Authentication error'
