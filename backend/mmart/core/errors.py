"""Typed errors for verification and voucher flows.

Every error carries a stable ``code`` and the HTTP status the API answers with.
Voucher rejections are specific so the shopper knows what to fix; verification
mismatches never get a dedicated class (the API answers generically).
"""


class MmartError(Exception):
    """Base exception rendered by the global error handler."""

    code = "MMART_ERROR"
    http_status = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_response(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


# ─── Verification ───────────────────────────────────────────────

class MissingContact(MmartError):
    code = "MISSING_CONTACT"
    default_message = "No delivery address on file for this channel."


class DeliveryFailed(MmartError):
    """Channel provider refused or could not be reached. Logged, never fatal to issuance."""

    code = "DELIVERY_FAILED"
    http_status = 502
    default_message = "Message could not be delivered."


# ─── Vouchers ───────────────────────────────────────────────────

class VoucherError(MmartError):
    code = "VOUCHER_ERROR"


class VoucherNotFound(VoucherError):
    code = "VOUCHER_NOT_FOUND"
    http_status = 404
    default_message = "Invalid voucher code."


class VoucherInactive(VoucherError):
    code = "VOUCHER_INACTIVE"
    default_message = "This voucher is no longer active."


class VoucherExpired(VoucherError):
    code = "VOUCHER_EXPIRED"
    default_message = "This voucher has expired."


class VoucherAlreadyUsed(VoucherError):
    code = "VOUCHER_ALREADY_USED"
    http_status = 409
    default_message = "A voucher has already been applied to this order."


class MinimumSpendNotMet(VoucherError):
    code = "MINIMUM_SPEND_NOT_MET"

    def __init__(self, min_spend):
        super().__init__(f"This voucher requires a minimum spend of {min_spend:.2f}.")
        self.min_spend = min_spend


class VoucherGloballyExhausted(VoucherError):
    code = "VOUCHER_GLOBALLY_EXHAUSTED"
    http_status = 409
    default_message = "This voucher has reached its usage limit."


class PerUserLimitReached(VoucherError):
    code = "PER_USER_LIMIT_REACHED"
    http_status = 409
    default_message = "You have already used this voucher the maximum number of times."


class VoucherNotEligible(VoucherError):
    code = "VOUCHER_NOT_ELIGIBLE"
    http_status = 403
    default_message = "This voucher is not available for your account."


class VoucherCodeCollision(VoucherError):
    """Generated code already taken. Retried inside bulk generation."""

    code = "VOUCHER_CODE_COLLISION"
    http_status = 409
    default_message = "Voucher code already exists."


class VoucherCodeSpaceExhausted(VoucherError):
    code = "VOUCHER_CODE_SPACE_EXHAUSTED"
    http_status = 500
    default_message = "Could not generate a unique voucher code; use a longer code length."


class VoucherNotApplicable(VoucherError):
    code = "VOUCHER_NOT_APPLICABLE"
    default_message = "This voucher does not apply to any item in your cart."


# ─── Catalog ────────────────────────────────────────────────────

class CatalogItemNotFound(MmartError):
    code = "CATALOG_ITEM_NOT_FOUND"
    http_status = 404
    default_message = "Product or category not found."
