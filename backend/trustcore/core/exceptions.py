"""错误分类

- ValidationError: 输入格式错误，在触碰存储之前拒绝
- RateLimitExceeded: OTP 请求过于频繁，可以直接告知调用方
- InfrastructureFault: 存储不可用，向上传播，绝不吞掉

OTP 验证失败（错码、过期、锁定、无有效码）不是异常，统一返回 False。
"""

from functools import wraps
from typing import Any, Callable, Optional

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError


class TrustEngineError(Exception):
    """引擎异常基类"""
    pass


class ValidationError(TrustEngineError):
    """输入校验错误"""
    pass


class UserNotFoundError(ValidationError):
    """用户不存在"""

    def __init__(self, user_id: Any):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class RiskSignalNotFoundError(ValidationError):
    """风险信号不存在"""

    def __init__(self, signal_id: Any):
        self.signal_id = signal_id
        super().__init__(f"Risk signal {signal_id} not found")


class RateLimitExceeded(TrustEngineError):
    """OTP 请求超过速率限制"""

    def __init__(self, max_requests: int, window_minutes: int, retry_after_seconds: Optional[int] = None):
        self.max_requests = max_requests
        self.window_minutes = window_minutes
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            "Too many OTP requests. Please try again later. "
            f"Maximum {max_requests} requests allowed in {window_minutes} minutes."
        )


class InfrastructureFault(TrustEngineError):
    """存储层故障"""
    pass


def translate_store_errors(func: Callable) -> Callable:
    """把数据库连接类错误转换为 InfrastructureFault

    只处理连接/池超时，约束冲突等仍由调用方自己处理。
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (OperationalError, InterfaceError, PoolTimeoutError) as e:
            raise InfrastructureFault(f"Store unavailable during {func.__name__}") from e

    return wrapper
