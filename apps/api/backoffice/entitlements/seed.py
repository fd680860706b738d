from __future__ import annotations

from sqlalchemy.orm import Session

from backoffice.entitlements.schemas import ProductCreate, ProductRead
from backoffice.entitlements.service import ProductService, product_service
from backoffice.platform.security.context import AuthContext


DEFAULT_PRODUCTS: tuple[ProductCreate, ...] = (
    ProductCreate(id="crm", name="CRM", description="Customer relationship management", icon="📊", menu_order=10),
    ProductCreate(id="hrm", name="HRM", description="Human resource management", icon="👥", menu_order=20),
    ProductCreate(id="job-portal", name="Job Portal", description="Candidate-facing job portal", icon="🔍", menu_order=30),
    ProductCreate(id="job-board", name="Job Board", description="Internal job board", icon="📋", menu_order=40),
    ProductCreate(
        id="project-management",
        name="Project Management",
        description="Projects, tasks and timelines",
        icon="🗂️",
        menu_order=50,
    ),
)


class ProductSeedHelper:
    def __init__(self, service: ProductService) -> None:
        self._service = service

    def ensure_default_products(self, session: Session, ctx: AuthContext) -> list[ProductRead]:
        """Creates the well-known products that are missing; existing rows are left untouched."""
        created: list[ProductRead] = []
        for product in DEFAULT_PRODUCTS:
            if self._service.repository.get(session, product.id) is None:
                created.append(self._service.create_product(session, ctx, product))
        return created


product_seed_helper = ProductSeedHelper(product_service)
