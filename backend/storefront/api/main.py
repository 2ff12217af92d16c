"""
API 路由汇总

- orders: 下单、订单查询、取消、支付回调
- admin: 订单管理与投递重试
- mta: 游戏服务器回调
- utils: 健康检查
"""
from fastapi import APIRouter

from storefront.api.routes import admin, mta, orders, utils

api_router = APIRouter()
api_router.include_router(orders.router)  # /orders/*
api_router.include_router(admin.router)  # /admin/*
api_router.include_router(mta.router)  # /mta/*
api_router.include_router(utils.router)  # /utils/*
