"""
Workflow Automation Engine

Validates operator-built trigger/condition/action graphs, compiles them into
executable decision trees and runs them against platform events
(orders, payins, payouts, KYC, wallets).
"""

__version__ = "1.0.0"
