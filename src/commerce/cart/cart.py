"""Cart aggregate (CQRS): one cart per user, guarded by its ``updated_at`` token.

The cart id is the owner's user id, so "exactly one cart per user" is
enforced by identity rather than by a lookup. ``updated_at`` doubles as the
optimistic-concurrency token: every committed mutation moves it strictly
forward, and callers that round-trip a previous representation send it back
as ``expected_updated_at``.
"""

import json
from datetime import UTC, datetime, timedelta

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from commerce import settings
from commerce.cart.events import (
    CartCreated,
    CartDetailsUpdated,
    CartItemAdded,
    CartItemRemoved,
    CartItemUpdated,
    CartPromotionApplied,
    CartPromotionRemoved,
)
from commerce.domain import commerce
from commerce.errors import Conflict, NotFound
from commerce.money import normalize_currency
from commerce.patch import CLEAR, Set
from commerce.utils.http import as_utc, truncate_to_seconds

CART_DETAIL_FIELDS = (
    "currency",
    "shipping_address_ref",
    "billing_address_ref",
    "notes",
    "promotion_hint",
)


def normalize_design_ref(value: str | None) -> str | None:
    """Design references are stored as ``/designs/<id>``."""
    ref = (value or "").strip()
    if not ref:
        return None
    ref = ref.strip("/")
    if ref.startswith("designs/"):
        ref = ref[len("designs/") :]
    if not ref or "/" in ref:
        raise ValidationError({"design_ref": ["Design reference must be a design id or /designs/<id>"]})
    return f"/designs/{ref}"


def sanitize_customization(value: dict | str | None) -> dict:
    """Drop entries whose key is blank; keys are trimmed."""
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise ValidationError({"customization": ["Customization must be a JSON object"]}) from exc
    if not isinstance(value, dict):
        raise ValidationError({"customization": ["Customization must be a JSON object"]})
    return {key.strip(): val for key, val in value.items() if isinstance(key, str) and key.strip()}


def _clean_text(value, field_name: str, limit: int) -> str | None:
    text = (value or "").strip()
    if len(text) > limit:
        raise ValidationError({field_name: [f"Must be at most {limit} characters"]})
    return text or None


@commerce.entity(part_of="Cart")
class CartItem:
    product_id = Identifier(required=True)
    sku = String(required=True, max_length=64)
    design_ref = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Integer(required=True, min_value=0)  # minor units
    currency = String(max_length=3)
    customization = Text(sanitize=False)  # JSON object
    requires_shipping = Boolean(default=True)
    weight_grams = Integer(default=0, min_value=0)
    tax_code = String(max_length=50)
    added_at = DateTime()
    updated_at = DateTime()

    @property
    def line_subtotal(self) -> int:
        return self.quantity * self.unit_price

    def customization_data(self) -> dict:
        return json.loads(self.customization) if self.customization else {}


@commerce.value_object(part_of="Cart")
class CartPromotion:
    """The single promotion a cart may carry.

    ``discount_amount`` is the collaborator's figure at application time;
    the effective discount is always capped at the live subtotal.
    """

    code = String(required=True, max_length=64)
    discount_amount = Integer(default=0, min_value=0)
    applied = Boolean(default=False)
    source = String(max_length=50)
    description = String(max_length=255)


@commerce.value_object(part_of="Cart")
class CartEstimate:
    """Cached totals. May be stale; checkout always re-prices."""

    subtotal = Integer(default=0)
    discount = Integer(default=0)
    tax = Integer(default=0)
    shipping = Integer(default=0)
    total = Integer(default=0)


@commerce.aggregate
class Cart:
    user_id = Identifier(required=True)
    currency = String(max_length=3, default=settings.DEFAULT_CURRENCY)
    items = HasMany(CartItem)
    promotion = ValueObject(CartPromotion)
    estimate = ValueObject(CartEstimate)
    shipping_address_ref = Identifier()
    billing_address_ref = Identifier()
    notes = Text()
    promotion_hint = String(max_length=120)
    cart_metadata = Text(sanitize=False)  # JSON: opaque key/value
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def items_must_be_priced_in_cart_currency(self):
        for item in self.items or []:
            if item.currency and item.currency != self.currency:
                raise ValidationError({"currency": ["All items must be priced in the cart currency"]})

    @invariant.post
    def item_ids_must_be_unique(self):
        ids = [str(item.id) for item in self.items or []]
        if len(ids) != len(set(ids)):
            raise ValidationError({"items": ["Item ids must be unique within a cart"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, user_id, currency=None):
        now = datetime.now(UTC)
        currency = normalize_currency(currency or settings.DEFAULT_CURRENCY)
        cart = cls(
            id=str(user_id),
            user_id=str(user_id),
            currency=currency,
            cart_metadata=json.dumps({}),
            estimate=CartEstimate(),
            created_at=now,
            updated_at=now,
        )
        cart.raise_(
            CartCreated(
                cart_id=str(cart.id),
                user_id=str(user_id),
                currency=currency,
                created_at=now,
            )
        )
        return cart

    # -------------------------------------------------------------------
    # Version token
    # -------------------------------------------------------------------
    def assert_version(self, expected_updated_at, truncate_to_second=False):
        """Fail with ``Conflict`` unless ``expected_updated_at`` matches the stored token.

        HTTP dates carry whole seconds only, so header-borne tokens are
        compared at that precision.
        """
        if expected_updated_at is None:
            return
        stored = as_utc(self.updated_at)
        expected = as_utc(expected_updated_at)
        if truncate_to_second:
            stored, expected = truncate_to_seconds(stored), truncate_to_seconds(expected)
        if stored != expected:
            raise Conflict(
                "Cart was modified by another request",
                cart_id=str(self.id),
                expected=expected.isoformat(),
                actual=stored.isoformat() if stored else None,
            )

    def _touch(self):
        """Advance ``updated_at`` strictly and refresh the cached estimate."""
        now = datetime.now(UTC)
        current = as_utc(self.updated_at)
        if current is not None and now <= current:
            now = current + timedelta(microseconds=1)
        self.updated_at = now
        self._refresh_estimate()
        return now

    def _refresh_estimate(self):
        subtotal = self.subtotal
        discount = min(self.effective_discount, subtotal)
        self.estimate = CartEstimate(
            subtotal=subtotal,
            discount=discount,
            tax=0,
            shipping=0,
            total=subtotal - discount,
        )

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    @property
    def subtotal(self) -> int:
        return sum(item.line_subtotal for item in self.items or [])

    @property
    def effective_discount(self) -> int:
        if not self.promotion or not self.promotion.applied:
            return 0
        return min(self.promotion.discount_amount or 0, self.subtotal)

    def find_item(self, item_id):
        return next((i for i in self.items or [] if str(i.id) == str(item_id)), None)

    def get_metadata(self) -> dict:
        return json.loads(self.cart_metadata) if self.cart_metadata else {}

    # -------------------------------------------------------------------
    # Cart details
    # -------------------------------------------------------------------
    def update_details(self, changes):
        """Apply tri-state ``changes`` ({field: Patch}) to the cart-level fields."""
        touched = []

        currency = changes.get("currency")
        if currency is CLEAR:
            raise ValidationError({"currency": ["Currency cannot be cleared"]})
        if isinstance(currency, Set):
            code = normalize_currency(currency.value)
            if code != self.currency and any(i.currency and i.currency != code for i in self.items or []):
                raise ValidationError({"currency": ["Currency cannot change while the cart holds priced items"]})
            self.currency = code
            touched.append("currency")

        for name in ("shipping_address_ref", "billing_address_ref"):
            patch = changes.get(name)
            if patch is CLEAR:
                setattr(self, name, None)
                touched.append(name)
            elif isinstance(patch, Set):
                ref = str(patch.value).strip()
                if not ref:
                    raise ValidationError({name: ["Address reference cannot be blank"]})
                setattr(self, name, ref)
                touched.append(name)

        limits = {
            "notes": settings.NOTES_MAX_LENGTH,
            "promotion_hint": settings.PROMOTION_HINT_MAX_LENGTH,
        }
        for name, limit in limits.items():
            patch = changes.get(name)
            if patch is CLEAR:
                setattr(self, name, None)
                touched.append(name)
            elif isinstance(patch, Set):
                setattr(self, name, _clean_text(patch.value, name, limit))
                touched.append(name)

        now = self._touch()
        self.raise_(
            CartDetailsUpdated(
                cart_id=str(self.id),
                changed_fields=json.dumps(touched),
                updated_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------
    def add_item(
        self,
        product_id,
        sku,
        quantity,
        unit_price,
        currency=None,
        design_ref=None,
        customization=None,
        requires_shipping=True,
        weight_grams=0,
        tax_code=None,
    ):
        """Append a new line. Equal product/sku/customization lines are not merged."""
        errors = {}
        if not str(product_id or "").strip():
            errors["product_id"] = ["Product is required"]
        if not str(sku or "").strip():
            errors["sku"] = ["SKU is required"]
        if quantity is None or quantity <= 0:
            errors["quantity"] = ["Quantity must be greater than zero"]
        if unit_price is None or unit_price < 0:
            errors["unit_price"] = ["Unit price must be zero or more"]
        if errors:
            raise ValidationError(errors)

        item_currency = normalize_currency(currency) if currency else self.currency
        if item_currency != self.currency:
            raise ValidationError({"currency": ["Item currency must match the cart currency"]})

        now = datetime.now(UTC)
        item = CartItem(
            product_id=str(product_id).strip(),
            sku=str(sku).strip(),
            design_ref=normalize_design_ref(design_ref),
            quantity=quantity,
            unit_price=unit_price,
            currency=item_currency,
            customization=json.dumps(sanitize_customization(customization)),
            requires_shipping=True if requires_shipping is None else requires_shipping,
            weight_grams=weight_grams or 0,
            tax_code=tax_code,
            added_at=now,
            updated_at=now,
        )
        self.add_items(item)
        stamp = self._touch()
        item.updated_at = stamp

        self.raise_(
            CartItemAdded(
                cart_id=str(self.id),
                item_id=str(item.id),
                product_id=item.product_id,
                sku=item.sku,
                quantity=quantity,
                unit_price=unit_price,
                updated_at=stamp,
            )
        )
        return item

    def update_item(self, item_id, **fields):
        """Replace only the fields given (``None`` means "leave as is")."""
        item = self.find_item(item_id)
        if item is None:
            raise NotFound("Cart item not found", cart_id=str(self.id), item_id=str(item_id))

        fields = {key: value for key, value in fields.items() if value is not None}
        if "quantity" in fields and fields["quantity"] <= 0:
            raise ValidationError({"quantity": ["Quantity must be greater than zero"]})
        if "unit_price" in fields and fields["unit_price"] < 0:
            raise ValidationError({"unit_price": ["Unit price must be zero or more"]})
        if "currency" in fields and normalize_currency(fields["currency"]) != self.currency:
            raise ValidationError({"currency": ["Item currency must match the cart currency"]})
        for name in ("product_id", "sku"):
            if name in fields:
                fields[name] = str(fields[name]).strip()
                if not fields[name]:
                    raise ValidationError({name: ["Cannot be blank"]})
        fields.pop("currency", None)

        if "design_ref" in fields:
            fields["design_ref"] = normalize_design_ref(fields["design_ref"])
        if "customization" in fields:
            fields["customization"] = json.dumps(sanitize_customization(fields["customization"]))

        for name, value in fields.items():
            setattr(item, name, value)

        stamp = self._touch()
        item.updated_at = stamp

        self.raise_(
            CartItemUpdated(
                cart_id=str(self.id),
                item_id=str(item.id),
                quantity=item.quantity,
                unit_price=item.unit_price,
                updated_at=stamp,
            )
        )
        return item

    def remove_item(self, item_id) -> bool:
        """Remove a line. Returns False, changing nothing, when it is absent."""
        item = self.find_item(item_id)
        if item is None:
            return False

        self.remove_items(item)
        stamp = self._touch()

        self.raise_(
            CartItemRemoved(
                cart_id=str(self.id),
                item_id=str(item_id),
                updated_at=stamp,
            )
        )
        return True

    # -------------------------------------------------------------------
    # Promotion
    # -------------------------------------------------------------------
    def apply_promotion(self, code, discount_amount, source=None, description=None):
        """Replace any current promotion with ``code``."""
        replaced = self.promotion.code if self.promotion else None
        self.promotion = CartPromotion(
            code=code,
            discount_amount=max(discount_amount or 0, 0),
            applied=True,
            source=source,
            description=description,
        )
        stamp = self._touch()

        self.raise_(
            CartPromotionApplied(
                cart_id=str(self.id),
                code=code,
                discount_amount=self.promotion.discount_amount,
                source=source,
                replaced_code=replaced,
                updated_at=stamp,
            )
        )

    def remove_promotion(self) -> bool:
        if not self.promotion:
            return False

        code = self.promotion.code
        self.promotion = None
        stamp = self._touch()

        self.raise_(
            CartPromotionRemoved(
                cart_id=str(self.id),
                code=code,
                updated_at=stamp,
            )
        )
        return True
