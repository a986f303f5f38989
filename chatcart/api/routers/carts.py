# chatcart/api/routers/carts.py
from fastapi import APIRouter, Depends

from chatcart.dependencies import get_cart_service
from chatcart.domain.cart import Cart
from chatcart.domain.schemas import (
    CartItemOut,
    CartOut,
    CompleteIn,
    CompleteOut,
    CouponIn,
    CouponOut,
    ItemIn,
    QuantityIn,
    ShippingAddressIn,
    ValidityOut,
)
from chatcart.services.cart_service import CartService

router = APIRouter(prefix="/carts", tags=["carts"])


def to_out(svc: CartService, cart: Cart) -> CartOut:
    return CartOut(
        id=cart.id,
        customer_phone=cart.customer_phone,
        status=cart.status.value,
        items=[
            CartItemOut(**item.model_dump(), line_total=item.line_total)
            for item in cart.items
        ],
        coupon_code=cart.coupon_code,
        shipping_address=cart.shipping_address,
        totals=svc.calculate_totals(cart),
        expires_at=cart.expires_at,
        created_at=cart.created_at,
        updated_at=cart.updated_at,
    )


@router.get("/{phone}", response_model=CartOut)
def get_cart(phone: str, svc: CartService = Depends(get_cart_service)):
    return to_out(svc, svc.get_cart(phone))


@router.post("/{phone}/items", response_model=CartOut)
def add_item(phone: str, payload: ItemIn, svc: CartService = Depends(get_cart_service)):
    cart = svc.add_item(
        phone,
        product_id=payload.product_id,
        variation_id=payload.variation_id,
        quantity=payload.quantity,
    )
    return to_out(svc, cart)


@router.patch("/{phone}/items/{item_index}", response_model=CartOut)
def update_quantity(
    phone: str,
    item_index: int,
    payload: QuantityIn,
    svc: CartService = Depends(get_cart_service),
):
    return to_out(svc, svc.update_quantity(phone, item_index, payload.quantity))


@router.delete("/{phone}/items/{item_index}", response_model=CartOut)
def remove_item(phone: str, item_index: int, svc: CartService = Depends(get_cart_service)):
    return to_out(svc, svc.remove_item(phone, item_index))


@router.delete("/{phone}/items", response_model=CartOut)
def clear_cart(phone: str, svc: CartService = Depends(get_cart_service)):
    return to_out(svc, svc.clear_cart(phone))


@router.post("/{phone}/coupon", response_model=CouponOut)
def apply_coupon(phone: str, payload: CouponIn, svc: CartService = Depends(get_cart_service)):
    applied = svc.apply_coupon(phone, payload.code)
    return CouponOut(discount=applied.discount, cart=to_out(svc, applied.cart))


@router.delete("/{phone}/coupon", response_model=CartOut)
def remove_coupon(phone: str, svc: CartService = Depends(get_cart_service)):
    return to_out(svc, svc.remove_coupon(phone))


@router.put("/{phone}/shipping-address", response_model=CartOut)
def set_shipping_address(
    phone: str,
    payload: ShippingAddressIn,
    svc: CartService = Depends(get_cart_service),
):
    return to_out(svc, svc.set_shipping_address(phone, payload.address))


@router.get("/{phone}/validity", response_model=ValidityOut)
def check_validity(phone: str, svc: CartService = Depends(get_cart_service)):
    report = svc.check_cart_validity(phone)
    return ValidityOut(
        is_valid=report.is_valid,
        issues=report.issues,
        cart=to_out(svc, report.cart),
    )


@router.post("/{phone}/complete", response_model=CompleteOut)
def complete(phone: str, payload: CompleteIn, svc: CartService = Depends(get_cart_service)):
    return CompleteOut(converted=svc.mark_completed(phone, payload.order_id))
