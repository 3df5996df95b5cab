"""通知适配器接口 - 用于解耦邮件等外部通知"""
from abc import ABC, abstractmethod
from typing import Any, Dict

from loguru import logger


class Notifier(ABC):
    """
    通知适配器抽象基类

    核心逻辑只在预约创建、取消和收款时调用这里的方法，
    具体投递方式（邮件、短信）由实现决定。通知失败不影响预约数据。
    """

    @abstractmethod
    def booking_created(self, booking_id: str, booking: Dict[str, Any]) -> None:
        """
        预约创建确认

        Args:
            booking_id: 预约ID
            booking: 主预约记录
        """
        pass

    @abstractmethod
    def booking_cancelled(self, booking_id: str, booking: Dict[str, Any]) -> None:
        """
        预约取消（drop 或删除）

        Args:
            booking_id: 预约ID
            booking: 取消前的主预约记录
        """
        pass

    @abstractmethod
    def payment_received(self, booking_id: str, booking: Dict[str, Any],
                         amount: float) -> None:
        """
        收款确认

        Args:
            booking_id: 预约ID
            booking: 更新后的主预约记录
            amount: 本次收款金额
        """
        pass


class NullNotifier(Notifier):
    """不发送任何通知"""

    def booking_created(self, booking_id, booking):
        pass

    def booking_cancelled(self, booking_id, booking):
        pass

    def payment_received(self, booking_id, booking, amount):
        pass


class LoggingNotifier(Notifier):
    """只把通知写入日志，用于本地运行"""

    def booking_created(self, booking_id, booking):
        logger.info(f"[通知] 预约已创建: {booking_id} customer={booking.get('customerId')}")

    def booking_cancelled(self, booking_id, booking):
        logger.info(f"[通知] 预约已取消: {booking_id} customer={booking.get('customerId')}")

    def payment_received(self, booking_id, booking, amount):
        logger.info(f"[通知] 已收款: {booking_id} amount={amount}")


def notify_safely(notifier: Notifier, event: str, *args: Any) -> bool:
    """调用通知方法，异常只记录日志。

    Returns:
        通知是否成功发出。
    """
    try:
        getattr(notifier, event)(*args)
    except Exception as e:
        logger.warning(f"通知发送失败 [{event}]: {e}")
        return False
    return True
