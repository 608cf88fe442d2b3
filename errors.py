"""
Error taxonomy for the Marketplace API.

Every domain failure is a MarketplaceError carrying a machine-readable code
and the HTTP status it surfaces as. Handlers in main.py render them as
{"detail": message, "code": code}. Anything else that escapes a route is an
internal error and is reported as a generic 500.
"""


class MarketplaceError(Exception):
    code = "ERROR"
    http_status = 500
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_response(self) -> dict:
        return {"detail": self.message, "code": self.code}


# 400

class ValidationFailed(MarketplaceError):
    code = "VALIDATION_ERROR"
    http_status = 400
    default_message = "Invalid request data"


class InvalidId(ValidationFailed):
    code = "INVALID_ID"
    default_message = "Invalid id"


class EmptyReview(ValidationFailed):
    code = "EMPTY_REVIEW"
    default_message = "Provide rating, comment, or image_url"


class InvalidRating(ValidationFailed):
    code = "INVALID_RATING"
    default_message = "rating must be an integer between 1 and 5"


class InvalidImageUrl(ValidationFailed):
    code = "INVALID_IMAGE_URL"
    default_message = "image_url must be a valid http(s) URL"


class InvalidComment(ValidationFailed):
    code = "INVALID_COMMENT"
    default_message = "comment is too long"


class InvalidIdentity(ValidationFailed):
    code = "INVALID_IDENTITY"
    default_message = "Provide an authenticated user or guest details"


class MissingIdentity(ValidationFailed):
    code = "MISSING_IDENTITY"
    default_message = "Provide an author or guest details"


class IdentityMismatch(ValidationFailed):
    code = "IDENTITY_MISMATCH"
    default_message = "origin does not match the review identity"


class NoChanges(ValidationFailed):
    code = "NO_CHANGES"
    default_message = "No changes provided"


class WeakPassword(ValidationFailed):
    code = "WEAK_PASSWORD"
    default_message = (
        "Password must have at least 6 characters and contain at least one number, "
        "one lowercase and one uppercase letter."
    )


# 401

class Unauthorized(MarketplaceError):
    code = "UNAUTHORIZED"
    http_status = 401
    default_message = "Could not validate credentials"


# 403

class Forbidden(MarketplaceError):
    code = "FORBIDDEN"
    http_status = 403
    default_message = "Not allowed"


class NotOwner(Forbidden):
    code = "NOT_OWNER"
    default_message = "Only the product owner may change this product"


class NotAuthor(Forbidden):
    code = "NOT_AUTHOR"
    default_message = "Only the review author may change this review"


class SelfReview(Forbidden):
    code = "SELF_REVIEW"
    default_message = "You cannot review your own product"


# 404

class NotFound(MarketplaceError):
    code = "NOT_FOUND"
    http_status = 404
    default_message = "Not found"


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"
    default_message = "Product not found"


# 409

class Conflict(MarketplaceError):
    code = "CONFLICT"
    http_status = 409
    default_message = "Conflict"


class DuplicateReview(Conflict):
    code = "DUPLICATE_REVIEW"
    default_message = "You already reviewed this product"


class EmailTaken(Conflict):
    code = "EMAIL_TAKEN"
    default_message = "Email already registered"
