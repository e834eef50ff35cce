from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from backend.app.db.session import SessionLocal
from backend.app.db.models.models_v1 import Branch, Category, Company, Department, Product

BRANCHES = ["Sawyerpuram", "Thoothukudi", "Chidambaram"]

CATALOG = {
    "Bakery": {
        "Breads": [("Milk Bread", "45.00"), ("Wheat Bread", "55.00")],
        "Cakes": [("Plum Cake", "120.00")],
    },
    "Snacks": {
        "Savouries": [("Mixture 250g", "60.00"), ("Murukku 200g", "50.00")],
    },
}


def run_seed():
    db = SessionLocal()
    try:
        company = db.scalar(select(Company).where(Company.name == "Demo Bakeries"))
        if not company:
            company = Company(name="Demo Bakeries")
            db.add(company)
            db.flush()

        for name in BRANCHES:
            if not db.scalar(select(Branch).where(Branch.name == name)):
                db.add(Branch(name=name, company_id=company.id, active=True))

        for dept_name, categories in CATALOG.items():
            dept = db.scalar(select(Department).where(Department.name == dept_name))
            if not dept:
                dept = Department(name=dept_name)
                db.add(dept)
                db.flush()
            for cat_name, products in categories.items():
                cat = db.scalar(
                    select(Category).where(Category.name == cat_name, Category.department_id == dept.id)
                )
                if not cat:
                    cat = Category(name=cat_name, department_id=dept.id)
                    db.add(cat)
                    db.flush()
                for prod_name, price in products:
                    if not db.scalar(select(Product).where(Product.name == prod_name)):
                        db.add(Product(name=prod_name, price=Decimal(price), category_id=cat.id))

        db.commit()
        print(f"SEED OK: company={company.name}, branches={len(BRANCHES)}")
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
