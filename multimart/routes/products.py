import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload

from multimart.database import get_db
from multimart.dependencies import require_seller
from multimart.errors import NotFoundError, PermissionDeniedError, ok
from multimart.models import Product, ProductVariant, User
from multimart.utils.money import money, fmt

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


# =====================================================
# PYDANTIC SCHEMAS
# =====================================================

class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    stock: int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    stock: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class VariantCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    sku: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    stock: int = Field(default=0, ge=0)


# =====================================================
# HELPERS
# =====================================================

def _serialize_variant(v: ProductVariant) -> dict:
    return {
        "id": v.id,
        "name": v.name,
        "sku": v.sku,
        "price": fmt(v.price) if v.price is not None else None,
        "stock": v.stock,
        "isActive": v.is_active,
    }


def _serialize_product(p: Product, include_variants: bool = False) -> dict:
    data = {
        "id": p.id,
        "sellerId": p.seller_id,
        "name": p.name,
        "description": p.description,
        "price": fmt(p.price),
        "stock": p.stock,
        "isActive": p.is_active,
        "createdAt": p.created_at,
    }
    if include_variants:
        data["variants"] = [_serialize_variant(v) for v in p.variants if v.is_active]
    return data


def _get_own_product(db: Session, product_id: int, seller: User) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found")
    if product.seller_id != seller.id:
        raise PermissionDeniedError("You can only manage your own products")
    return product


# =====================================================
# PUBLIC: LIST PRODUCTS
# =====================================================
@router.get("")
def list_products(
    db: Session = Depends(get_db),
    search: Optional[str] = None,
    page: int = 1,
    per_page: int = 20,
):
    page = max(page, 1)
    per_page = min(max(per_page, 1), 100)

    query = db.query(Product).filter(Product.is_active == True)  # noqa: E712

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(Product.name.ilike(pattern) | Product.description.ilike(pattern))

    total = query.count()
    products = (
        query.order_by(Product.created_at.desc(), Product.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    return ok("Products retrieved successfully", {
        "products": [_serialize_product(p) for p in products],
        "pagination": {"page": page, "perPage": per_page, "total": total},
    })


# =====================================================
# PUBLIC: PRODUCT DETAIL
# =====================================================
@router.get("/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = (
        db.query(Product)
        .options(joinedload(Product.variants))
        .filter(Product.id == product_id, Product.is_active == True)  # noqa: E712
        .first()
    )
    if not product:
        raise NotFoundError("Product not found")

    return ok("Product retrieved successfully", _serialize_product(product, include_variants=True))


# =====================================================
# SELLER: CREATE PRODUCT
# =====================================================
@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    seller: User = Depends(require_seller),
):
    product = Product(
        seller_id=seller.id,
        name=payload.name.strip(),
        description=payload.description,
        price=money(payload.price),
        stock=payload.stock,
        is_active=True,
    )
    db.add(product)
    db.commit()
    db.refresh(product)

    logger.info("Product created | product_id=%s seller_id=%s", product.id, seller.id)
    return ok("Product created successfully", _serialize_product(product))


# =====================================================
# SELLER: UPDATE PRODUCT
# =====================================================
@router.patch("/{product_id}")
def update_product(
    product_id: int,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    seller: User = Depends(require_seller),
):
    product = _get_own_product(db, product_id, seller)

    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None and field != "description":
            continue
        if field == "price":
            value = money(value)
        setattr(product, field, value)

    db.commit()
    db.refresh(product)

    logger.info(
        "Product updated | product_id=%s seller_id=%s fields=%s",
        product.id,
        seller.id,
        ",".join(sorted(changes)),
    )
    return ok("Product updated successfully", _serialize_product(product))


# =====================================================
# SELLER: ADD VARIANT
# =====================================================
@router.post("/{product_id}/variants", status_code=status.HTTP_201_CREATED)
def add_variant(
    product_id: int,
    payload: VariantCreate,
    db: Session = Depends(get_db),
    seller: User = Depends(require_seller),
):
    product = _get_own_product(db, product_id, seller)

    variant = ProductVariant(
        product_id=product.id,
        name=payload.name.strip(),
        sku=payload.sku,
        price=money(payload.price) if payload.price is not None else None,
        stock=payload.stock,
        is_active=True,
    )
    db.add(variant)
    db.commit()
    db.refresh(variant)

    return ok("Variant added successfully", _serialize_variant(variant))
