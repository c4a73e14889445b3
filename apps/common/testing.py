import datetime
from contextlib import contextmanager
from unittest import mock

from apps.common.utils.dates import studio_zone


@contextmanager
def freeze_today(day: datetime.date, hour: int = 10):
    """Pin ``timezone.now()`` to ``hour`` o'clock studio time on ``day``."""
    frozen = datetime.datetime.combine(day, datetime.time(hour), tzinfo=studio_zone())
    with mock.patch("django.utils.timezone.now", return_value=frozen):
        yield frozen
