"""Input checks shared by the coordinator operations. All of these run before any lock is taken."""

from typing import Iterable, List

from ...errors import NotFound, Unauthorized, ValidationError
from ...models import Organization, Product, db
from ...utils.error_messages import ErrorMessages as EM
from ._results import ProductLine


def normalize_lines(lines, *, min_quantity: int = 1) -> List[ProductLine]:
    """Coerce ProductLine / (product_id, quantity) pairs and reject empty, duplicate or non-positive lines."""
    try:
        lines = list(lines or ())
    except TypeError:
        raise ValidationError(EM.LINES_REQUIRED) from None
    if not lines:
        raise ValidationError(EM.LINES_REQUIRED)

    normalized = []
    seen = set()
    for raw in lines:
        try:
            product_id, quantity = (raw.product_id, raw.quantity) if isinstance(raw, ProductLine) else raw
            line = ProductLine(product_id=int(product_id), quantity=int(quantity))
        except (TypeError, ValueError):
            raise ValidationError(EM.LINE_MALFORMED.format(line=raw)) from None

        if line.quantity < min_quantity:
            raise ValidationError(EM.LINE_QUANTITY_POSITIVE.format(product_id=line.product_id))
        if line.product_id in seen:
            raise ValidationError(EM.LINE_DUPLICATE_PRODUCT.format(product_id=line.product_id))
        seen.add(line.product_id)
        normalized.append(line)
    return normalized


def total_quantity(lines: Iterable[ProductLine]) -> int:
    return sum(line.quantity for line in lines)


def validate_reason(reason, minimum: int, maximum: int) -> str:
    text = (reason or "").strip()
    if not (minimum <= len(text) <= maximum):
        raise ValidationError(EM.RETURN_REASON_LENGTH.format(minimum=minimum, maximum=maximum))
    return text


def validate_code_ids(code_ids) -> List[int]:
    try:
        ids = sorted({int(code_id) for code_id in (code_ids or [])})
    except (TypeError, ValueError):
        raise ValidationError(EM.CODE_IDS_INVALID) from None
    if not ids:
        raise ValidationError(EM.CODES_REQUIRED)
    return ids


def load_active_organization(org_id: int, allowed_roles=None) -> Organization:
    """Fetch an organization and enforce that it is ACTIVE (and, optionally, holds one of ``allowed_roles``)."""
    org = db.session.get(Organization, org_id)
    if org is None:
        raise NotFound(EM.ORG_NOT_FOUND.format(org_id=org_id))
    if not org.is_active:
        raise Unauthorized(EM.ORG_NOT_ACTIVE.format(org_id=org_id))
    if allowed_roles is not None and org.role not in allowed_roles:
        expected = "/".join(sorted(role.value for role in allowed_roles))
        raise Unauthorized(EM.ROLE_REQUIRED.format(role=expected, org_id=org_id, actual=org.role.value))
    return org


def load_products(lines: Iterable[ProductLine]) -> dict:
    products = {}
    for line in lines:
        product = db.session.get(Product, line.product_id)
        if product is None:
            raise NotFound(EM.PRODUCT_NOT_FOUND.format(product_id=line.product_id))
        products[product.id] = product
    return products
