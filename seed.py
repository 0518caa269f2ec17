"""
Seed demo data: jewelry categories, products, one admin and Faker customers.

    python seed.py
"""
import logging
import random

from faker import Faker
from pymongo.database import Database

import database
from database import create_document
from schemas import Category, Product, ProductImage, Role, User
from security import hash_password

logger = logging.getLogger(__name__)

ADMIN_EMAIL = "admin@aggems.in"
CUSTOMER_COUNT = 20

CATEGORIES = [
    ("Rings", "Beautiful rings for every occasion", ["/sparkling-diamond-ring.png", "/solitaire-diamond-ring.png"]),
    ("Necklaces", "Elegant necklaces and pendants", ["/gold-necklace.png", "/gold-necklace-luxury.jpg"]),
    ("Earrings", "Stunning earrings collection", ["/pearl-earrings.png", "/chandelier-earrings.jpg"]),
    ("Bracelets", "Charming bracelets and bangles", ["/gold-bracelet.png", "/jewelled-bracelet.jpg"]),
    ("Anklets", "Graceful anklets", ["/gold-bracelet.png"]),
]

MATERIALS = [("gold", "gold", "22K"), ("gold", "gold", "18K"), ("silver", "silver", "925"),
             ("platinum", "platinum", "950"), ("diamond", "gold", "18K")]


def seed_categories(db: Database) -> dict:
    ids = {}
    for order, (name, description, _) in enumerate(CATEGORIES, start=1):
        existing = db["category"].find_one({"slug": name.lower()})
        if existing:
            ids[name] = existing["_id"]
            continue
        category = Category(name=name, slug=name.lower(), description=description, order=order)
        ids[name] = database.parse_object_id(create_document(db, "category", category))
    return ids


def seed_products(db: Database, category_ids: dict, fake: Faker, per_category: int = 4) -> int:
    if db["product"].count_documents({}) > 0:
        return 0
    created = 0
    for name, _, images in CATEGORIES:
        for _ in range(per_category):
            material, metal, purity = random.choice(MATERIALS)
            title = f"{fake.word().title()} {material.title()} {name[:-1]}"
            product = Product(
                name=title,
                description=fake.paragraph(nb_sentences=3),
                price=random.choice([2499, 4999, 7999, 12999, 24999, 54999]),
                category=category_ids[name],
                images=[ProductImage(url=random.choice(images), alt=title, is_primary=True)],
                material=material,
                metal={"type": metal, "purity": purity, "weight": round(random.uniform(2, 30), 1)},
                tags=[name.lower(), material],
                stock=random.randint(0, 40),
                is_featured=random.random() < 0.25,
            )
            create_document(db, "product", product)
            created += 1
    return created


def seed_users(db: Database, fake: Faker, count: int = CUSTOMER_COUNT) -> int:
    created = 0
    if not db["user"].find_one({"role": Role.ADMIN.value}):
        admin = User(first_name="Store", last_name="Admin", email=ADMIN_EMAIL,
                     password_hash=hash_password("Admin@123"), role=Role.ADMIN)
        create_document(db, "user", admin)
        created += 1

    existing = db["user"].count_documents({"role": Role.USER.value})
    for _ in range(max(0, count - existing)):
        user = User(
            first_name=fake.first_name(),
            last_name=fake.last_name(),
            email=fake.unique.email(),
            password_hash=hash_password("Password@123"),
            phone=fake.msisdn()[:10],
        )
        create_document(db, "user", user)
        created += 1
    return created


def seed(db: Database) -> dict:
    fake = Faker("en_IN")
    category_ids = seed_categories(db)
    return {
        "categories": len(category_ids),
        "products": seed_products(db, category_ids, fake),
        "users": seed_users(db, fake),
    }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    result = seed(database.get_db())
    logger.info("Seeded %s", result)
