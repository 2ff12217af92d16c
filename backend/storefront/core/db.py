"""
数据库引擎与初始数据

表结构由 Alembic 迁移管理，这里不建表。
使用引擎前需先导入 ``storefront.models``，确保所有表都已注册。
"""
from decimal import Decimal

from sqlmodel import Session, create_engine, func, select

from storefront.core.config import settings
from storefront.models import Product

engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI))


# 新环境的初始商品，stock=-1 表示不限量
SAMPLE_PRODUCTS: list[dict] = [
    {
        "name": "VIP Bronze",
        "description": "Bronze VIP status for 30 days",
        "price": Decimal("4.99"),
        "category": "vip",
        "mta_item_type": "vip",
        "mta_item_data": '{"level": "bronze", "days": 30}',
        "stock": -1,
    },
    {
        "name": "VIP Gold",
        "description": "Gold VIP status for 30 days",
        "price": Decimal("9.99"),
        "category": "vip",
        "mta_item_type": "vip",
        "mta_item_data": '{"level": "gold", "days": 30}',
        "stock": -1,
    },
    {
        "name": "VIP Diamond",
        "description": "Diamond VIP status for 30 days",
        "price": Decimal("19.99"),
        "category": "vip",
        "mta_item_type": "vip",
        "mta_item_data": '{"level": "diamond", "days": 30}',
        "stock": -1,
    },
    {
        "name": "1,000 City Coins",
        "description": "1,000 in-game coins",
        "price": Decimal("2.99"),
        "category": "coins",
        "mta_item_type": "coins",
        "mta_item_data": '{"amount": 1000}',
        "stock": -1,
    },
    {
        "name": "5,000 City Coins",
        "description": "5,000 in-game coins",
        "price": Decimal("12.99"),
        "category": "coins",
        "mta_item_type": "coins",
        "mta_item_data": '{"amount": 5000}',
        "stock": -1,
    },
    {
        "name": "Legendary Cars Pack",
        "description": "Limited vehicle pack",
        "price": Decimal("24.99"),
        "category": "vehicles",
        "mta_item_type": "item",
        "mta_item_data": '{"type": "vehicle_pack", "id": "legendary_cars"}',
        "stock": 100,
    },
    {
        "name": "Master Weapon Bundle",
        "description": "Weapon bundle for veterans",
        "price": Decimal("14.99"),
        "category": "weapons",
        "mta_item_type": "item",
        "mta_item_data": '{"type": "weapon_bundle", "id": "master"}',
        "stock": -1,
    },
    {
        "name": "Starter Bundle",
        "description": "Everything a new player needs",
        "price": Decimal("7.99"),
        "category": "special",
        "mta_item_type": "special",
        "mta_item_data": '{"type": "bundle", "id": "starter"}',
        "stock": -1,
    },
]


def init_db(session: Session) -> None:
    """
    初始化商品数据

    商品表为空时写入示例商品，已有数据则跳过。

    Args:
        session: 数据库会话
    """
    count = session.exec(select(func.count()).select_from(Product)).one()
    if count:
        return
    for data in SAMPLE_PRODUCTS:
        session.add(Product(**data))
    session.commit()
