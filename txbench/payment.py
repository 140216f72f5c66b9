"""Abort points and text formatting of the TPC-C Payment transaction."""

from __future__ import annotations

from enum import IntEnum


class PaymentAbortID(IntEnum):
    """Stages of Payment at which a system abort can happen."""

    PREPARE_UPDATE_WAREHOUSE = 0
    FINISH_UPDATE_WAREHOUSE = 1
    PREPARE_UPDATE_DISTRICT = 2
    FINISH_UPDATE_DISTRICT = 3
    PREPARE_UPDATE_CUSTOMER_BY_LAST_NAME = 4
    PREPARE_UPDATE_CUSTOMER = 5
    FINISH_UPDATE_CUSTOMER = 6
    PREPARE_INSERT_HISTORY = 7
    FINISH_INSERT_HISTORY = 8
    PRECOMMIT = 9


def abort_reason(abort_id: PaymentAbortID | int) -> str:
    """Name of the stage an abort id stands for; ValueError if there is none."""
    return PaymentAbortID(abort_id).name


def format_customer_data(
    c_id: int,
    c_d_id: int,
    c_w_id: int,
    d_id: int,
    w_id: int,
    h_amount: float,
    old_data: str,
    max_data: int,
) -> str:
    """Prepend a payment entry to a bad-credit customer's data, keeping at most ``max_data`` chars."""
    entry = "| %4d %2d %4d %2d %4d $%7.2f" % (c_id, c_d_id, c_w_id, d_id, w_id, h_amount)
    if len(entry) > max_data:
        raise ValueError(f"payment entry of {len(entry)} chars exceeds {max_data}")
    return (entry + old_data)[:max_data]


def format_history_data(w_name: str, d_name: str) -> str:
    """History data: warehouse name padded to 10, four spaces, district name up to 10."""
    return f"{w_name[:10]:<10}    {d_name[:10]}"