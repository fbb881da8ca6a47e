"""Log filters for PII masking."""

import logging
import re


class PIIFilter(logging.Filter):
    """Masks emails and phone numbers in log messages and their arguments.

    Rider ids arrive from upstream systems and are logged as ``%s`` arguments,
    so string arguments are masked as well as the format string.
    """

    EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+")
    PHONE_PATTERN = re.compile(r"\+?\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b")

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
        rider_id = getattr(record, "rider_id", None)
        if isinstance(rider_id, str):
            record.rider_id = self.mask(rider_id)
        return True

    @classmethod
    def mask(cls, text: str) -> str:
        if "@" in text:
            text = cls.EMAIL_PATTERN.sub("[EMAIL]", text)
        if any(c.isdigit() for c in text):
            text = cls.PHONE_PATTERN.sub("[PHONE]", text)
        return text
