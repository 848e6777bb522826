# tonescrow/routers/v1/endpoints/products.py
from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from tonescrow.core.exceptions import NotFound
from tonescrow.core.limiter import limiter
from tonescrow.crud import product as crud_product
from tonescrow.dependencies import get_current_escrow_settings, get_current_user, get_db
from tonescrow.models.profile import Profile
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.schemas.transaction import Product, ProductCreate
from tonescrow.services import escrow as escrow_service

router = APIRouter()


@router.post("/products", response_model=Product, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_product(
    request: Request,
    data: ProductCreate,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
    escrow_settings: EscrowSettings = Depends(get_current_escrow_settings),
):
    """Продавец создает листинг и получает уникальную ссылку для покупателя."""
    return escrow_service.create_product(db, current_user, data.title, data.price, data.currency, escrow_settings)


@router.get("/products", response_model=List[Product])
def list_my_products(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return crud_product.get_seller_products(db, current_user.id, skip=(page - 1) * size, limit=size)


@router.get("/products/link/{link}", response_model=Product)
def get_product_by_link(
    link: str,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    """Карточка товара по ссылке, которую продавец отправил покупателю."""
    product = crud_product.get_product_by_link(db, link)
    if product is None or not product.is_active:
        raise NotFound("Product not found")
    return product


@router.delete("/products/{product_id}", response_model=Product)
def deactivate_product(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return escrow_service.deactivate_product(db, current_user, product_id)
