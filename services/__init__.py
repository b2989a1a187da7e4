"""Compensation services: salary, deductions, waivers and controller earnings."""

from .controller_earnings import ControllerEarningsCalculator
from .salary import SalaryCalculator, get_payment_status, set_payment_status
from .waivers import WaiverEngine, WaiverRequest

__all__ = [
    'ControllerEarningsCalculator',
    'SalaryCalculator',
    'get_payment_status',
    'set_payment_status',
    'WaiverEngine',
    'WaiverRequest',
]
