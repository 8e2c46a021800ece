from presale.infrastructure.notifications.http import HttpNotifier
from presale.infrastructure.notifications.logging_notifier import LoggingNotifier

__all__ = ["HttpNotifier", "LoggingNotifier"]
