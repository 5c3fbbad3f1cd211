from enum import Enum


class AccountSelection(str, Enum):
    """Which accounts of one linking session get linked"""
    FIRST = "first"
    ALL = "all"


class ExchangeStatus(str, Enum):
    COMPLETE = "complete"


class CustomerType(str, Enum):
    """Payment-rail customer types"""
    PERSONAL = "personal"
    RECEIVE_ONLY = "receive-only"
