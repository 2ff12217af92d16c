"""
自定义异常模块

业务错误统一抛出 ``AppError``，main.py 中的异常处理器将其转换为统一的
``{"code", "message", "data"}`` 响应。下面的便捷函数保证错误码和消息一致。
"""
from __future__ import annotations


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码（前端据此区分错误）
    - message: 错误消息
    - status_code: HTTP 状态码（400, 404 等）

    使用示例：
        raise AppError(code=404201, message="Order not found", status_code=404)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class RetryExhaustedError(AppError):
    """订单的投递重试次数已用尽"""

    def __init__(self, *, order_id: int, max_attempts: int) -> None:
        super().__init__(
            code=400301,
            message=f"Maximum retry attempts exceeded ({max_attempts})",
            status_code=400,
        )
        self.order_id = order_id
        self.max_attempts = max_attempts


def missing_order_id() -> AppError:
    return AppError(code=400001, message="Order ID is required", status_code=400)


def empty_order() -> AppError:
    return AppError(code=400101, message="Order must contain at least one item", status_code=400)


def insufficient_stock(product_name: str) -> AppError:
    return AppError(code=400102, message=f"Not enough stock for {product_name}", status_code=400)


def invalid_state(message: str) -> AppError:
    return AppError(code=400201, message=message, status_code=400)


def invalid_api_key() -> AppError:
    return AppError(code=401001, message="Invalid API key", status_code=401)


def invalid_webhook_secret() -> AppError:
    return AppError(code=401002, message="Invalid webhook secret", status_code=401)


def forbidden(message: str = "Forbidden") -> AppError:
    return AppError(code=403201, message=message, status_code=403)


def product_not_found(product_id: int) -> AppError:
    return AppError(code=404101, message=f"Product {product_id} not found", status_code=404)


def order_not_found() -> AppError:
    return AppError(code=404201, message="Order not found", status_code=404)


def attempt_conflict() -> AppError:
    # 同一序号已被其他请求占用，客户端可直接重发
    return AppError(
        code=409301,
        message="Concurrent delivery update, please retry",
        status_code=409,
    )
