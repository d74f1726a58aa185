"""Custom exceptions for the listing and bidding engine."""


class MarketplaceError(Exception):
    """Base exception for marketplace errors surfaced to callers."""
    code = 'marketplace_error'
    status_code = 400

    def __init__(self, message):
        self.message = message
        super().__init__(message)

    def as_dict(self):
        """Structured payload for API responses."""
        return {'error': self.code, 'message': self.message}


class ValidationError(MarketplaceError):
    """Raised when input is malformed or out of range."""
    code = 'validation_error'

    def __init__(self, field, message):
        self.field = field
        super().__init__(message)

    def as_dict(self):
        data = super().as_dict()
        data['field'] = self.field
        return data


class NotFound(MarketplaceError):
    """Raised when a listing, offer or user cannot be found."""
    code = 'not_found'
    status_code = 404

    def __init__(self, kind, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} {identifier} not found.")


class Forbidden(MarketplaceError):
    """Raised when a user mutates something they do not own."""
    code = 'forbidden'
    status_code = 403


class InvalidState(MarketplaceError):
    """Raised when an operation is not legal for the current status."""
    code = 'invalid_state'


class BidTooLow(InvalidState):
    """Raised when a maximum bid is below the required minimum."""
    code = 'bid_too_low'

    def __init__(self, minimum_bid):
        self.minimum_bid = minimum_bid
        super().__init__(f"Minimum bid is ${minimum_bid:.2f}.")

    def as_dict(self):
        data = super().as_dict()
        data['minimum_bid'] = str(self.minimum_bid)
        return data


class Conflict(MarketplaceError):
    """Raised when a write collides with an existing record."""
    code = 'conflict'
    status_code = 409


class OneActiveOfferPerBuyer(Conflict):
    """Raised when a buyer already has an open offer on the listing."""
    code = 'active_offer_exists'

    def __init__(self, offer):
        self.offer = offer
        super().__init__("You already have an active offer on this listing.")

    def as_dict(self):
        data = super().as_dict()
        data['offer_id'] = str(self.offer.pk)
        return data


class ConcurrentModification(Conflict):
    """Raised when a listing changed between read and write."""
    code = 'concurrent_modification'

    def __init__(self, listing_id):
        self.listing_id = listing_id
        super().__init__(
            f"Listing {listing_id} was modified by another request. Please retry."
        )


class AccountSuspended(MarketplaceError):
    """Raised when a suspended account tries to bid, list or make offers."""
    code = 'account_suspended'
    status_code = 403

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(
            "Your account is suspended and cannot bid, list items or make offers."
        )
