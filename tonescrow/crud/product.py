# tonescrow/crud/product.py
from decimal import Decimal
from sqlalchemy.orm import Session

from tonescrow.models.product import Product


def create_product(db: Session, seller_id: int, title: str, price: Decimal, currency: str, unique_link: str) -> Product:
    product = Product(seller_id=seller_id, title=title, price=price, currency=currency, unique_link=unique_link)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product

def get_product(db: Session, product_id: int) -> Product | None:
    return db.query(Product).filter(Product.id == product_id).first()

def get_product_by_link(db: Session, link: str) -> Product | None:
    return db.query(Product).filter(Product.unique_link == link).first()

def get_seller_products(db: Session, seller_id: int, skip: int = 0, limit: int = 20) -> list[Product]:
    return db.query(Product).filter(
        Product.seller_id == seller_id
    ).order_by(Product.created_at.desc()).offset(skip).limit(limit).all()

def deactivate_product(db: Session, product_id: int) -> None:
    db.query(Product).filter(Product.id == product_id).update({"is_active": False}, synchronize_session=False)
