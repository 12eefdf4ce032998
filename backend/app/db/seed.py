from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from backend.app.db.session import SessionLocal
from backend.app.db.models.models_v1 import Product, Provider, ReorderRule, Tenant


def run_seed():
    db = SessionLocal()
    try:
        # 1) Tenant de démo
        tenant = db.scalar(select(Tenant).where(Tenant.name == "Demo"))
        if not tenant:
            tenant = Tenant(name="Demo", timezone="Europe/Madrid", active=True)
            db.add(tenant)
            db.commit()

        # 2) Fournisseur
        provider = db.scalar(
            select(Provider).where(Provider.tenant_id == tenant.id, Provider.name == "Proveedor Demo")
        )
        if not provider:
            provider = Provider(tenant_id=tenant.id, name="Proveedor Demo", email="pedidos@proveedor.demo")
            db.add(provider)
            db.commit()

        # 3) Produits + règles : A et B sous le seuil, C avec règle désactivée
        catalog = [
            ("DEMO-A", "Producto A", 3, Decimal("12.50"), 10, 50, True),
            ("DEMO-B", "Producto B", 1, Decimal("4.20"), 5, 20, True),
            ("DEMO-C", "Producto C", 20, Decimal("7.00"), 5, 10, False),
        ]
        for code, name, stock, price, trigger, qty, enabled in catalog:
            product = db.scalar(select(Product).where(Product.tenant_id == tenant.id, Product.code == code))
            if not product:
                product = Product(tenant_id=tenant.id, code=code, name=name, stock=stock, unit_price=price)
                db.add(product)
                db.flush()
                db.add(
                    ReorderRule(
                        tenant_id=tenant.id,
                        product_id=product.id,
                        provider_id=provider.id,
                        trigger_stock=trigger,
                        reorder_qty=qty,
                        enabled=enabled,
                        requires_approval=True,
                    )
                )
        db.commit()

        print(f"SEED OK: tenant={tenant.name}, provider={provider.name}, products={len(catalog)}")
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
