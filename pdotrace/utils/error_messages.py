"""
Centralized Error Messages

Single source of truth for the messages attached to traceability errors.

Usage:
    from pdotrace.utils.error_messages import ErrorMessages as EM

    raise InsufficientStock(EM.INSUFFICIENT_STOCK.format(requested=10, available=5))
"""


class ErrorMessages:
    """Operator-facing error messages - plain text, format placeholders only"""

    # ==================== ORGANIZATION ====================
    ORG_NOT_FOUND = "Organization {org_id} not found."
    ORG_NOT_ACTIVE = "Organization {org_id} is not active."
    ROLE_REQUIRED = "Operation requires role {role}; organization {org_id} is {actual}."
    SHIPMENT_ROUTE_DENIED = "Shipments from {sender} to {receiver} are not permitted."
    RETURN_ROUTE_DENIED = "Returns from {requester} to {target} are not permitted."
    NOT_RECEIVER = "Organization {org_id} is not the receiver of {entity} {entity_id}."
    NOT_CODE_OWNER = "Virtual code {code} is not owned by organization {org_id}."
    NOT_RECORD_OWNER = "Organization {org_id} does not own {entity} {entity_id}."

    # ==================== PRODUCTS & LOTS ====================
    PRODUCT_NOT_FOUND = "Product {product_id} not found."
    PRODUCT_INACTIVE = "Product {product_id} is inactive."
    PRODUCT_STATUS_INVALID = "Unknown product status {status!r}."
    PRODUCT_NOT_OWNED = "Product {product_id} does not belong to manufacturer {org_id}."
    PRODUCT_CODE_INVALID = "Product code must be 6-20 uppercase letters or digits."
    LOT_QUANTITY_RANGE = "Lot quantity must be between {minimum} and {maximum}."
    LOT_NUMBER_INVALID = "Lot number {lot_number} does not match the required format."
    EXPIRY_TOO_SOON = "Expiry date {expiry} must be on or after {earliest}."
    EXPIRY_TOO_LATE = "Expiry date {expiry} must be on or before {latest}."
    SEQUENCE_CONFLICT = "Lot sequence for manufacturer {org_id} on {day} could not be reserved after {attempts} attempts."
    CODE_SPACE_EXHAUSTED = "Unable to generate a unique virtual code for lot {lot_id} sequence {sequence} after {attempts} attempts."

    # ==================== QUANTITIES ====================
    LINES_REQUIRED = "At least one product line is required."
    LINE_MALFORMED = "Line {line!r} must be a (product id, quantity) pair of integers."
    LINE_QUANTITY_POSITIVE = "Quantity for product {product_id} must be at least 1."
    LINE_DUPLICATE_PRODUCT = "Product {product_id} appears on more than one line."
    SHIPMENT_QUANTITY_EXCEEDED = "Shipment quantity {quantity} exceeds the maximum of {maximum}."
    TREATMENT_QUANTITY_EXCEEDED = "Treatment quantity {quantity} exceeds the maximum of {maximum}."
    SAME_PARTY = "Sender and receiver must be different organizations."
    INSUFFICIENT_STOCK = "Insufficient stock for product {product_id}: requested {requested}, available {available}."

    # ==================== TREATMENT & RECALL ====================
    PATIENT_REQUIRED = "A patient identifier is required."
    PHONE_INVALID = "Invalid phone number format."
    TREATMENT_DATE_FUTURE = "Treatment date cannot be in the future."
    RECALL_WINDOW_EXPIRED = "Recall window of {hours} hours has passed for treatment {treatment_id}."
    RECALL_STATUS_INVALID = "Treatment {treatment_id} contains units that are not in USED status."
    RECALL_REASON_TOO_LONG = "Recall reason must be at most {maximum} characters."

    # ==================== RETURNS & DISPOSAL ====================
    RETURN_REASON_LENGTH = "Return reason must be between {minimum} and {maximum} characters."
    CODES_REQUIRED = "At least one virtual code is required."
    CODE_IDS_INVALID = "Virtual code ids must be integers."

    # ==================== STATE ====================
    ILLEGAL_TRANSITION = "Virtual code {code} cannot move from {current} to {target}."
    ALREADY_RESOLVED = "{entity} {entity_id} is already {status}."
    ENTITY_NOT_FOUND = "{entity} {entity_id} not found."
    LOCK_TIMEOUT = "Another operation is holding {domain} lock {key}; try again shortly."
