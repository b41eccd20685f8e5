class BookingError(Exception):
    """Base class for errors raised by the pricing and booking core."""


class ValidationError(BookingError):
    def __init__(self, errors, message='Validation failed'):
        if isinstance(errors, str):
            errors = {'__all__': errors}
        self.errors = dict(errors)
        super().__init__(message)

    def __str__(self):
        return '; '.join(f'{field}: {msg}' for field, msg in self.errors.items())


class NotFoundError(BookingError):
    pass


class StoreUnavailableError(BookingError):
    pass


class DuplicateKeyError(BookingError):
    pass


class PaymentProviderError(BookingError):
    def __init__(self, message, gateway=None, booking_id=None):
        self.gateway = gateway
        self.booking_id = booking_id
        super().__init__(message)


class DuplicateConfirmationError(BookingError):
    """Raised when a payment with the same gateway transaction id is already recorded."""


class BookingStateError(BookingError):
    pass


class ImmutableRecordError(BookingError):
    pass
