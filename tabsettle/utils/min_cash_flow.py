"""
Min-Cash-Flow Algorithm Module

This module implements the greedy Min-Cash-Flow pairing used to turn net
entity balances into a short list of settlement transactions.

The algorithm works by:
1. Separating entities into creditors (positive balance) and debtors (negative balance)
2. Sorting both sides largest-first
3. Walking both lists with two pointers, each step settling the smaller of the two remainders
4. Advancing whichever side (or both) reached zero

Balances are integer cents, so "settled" means exactly zero; there is no
rounding tolerance anywhere in the loop.

The result is a heuristic: it never produces more than n - 1 transactions
for n non-zero entities, but it is not guaranteed to find the global
minimum transaction count for every balance distribution.

Time Complexity: O(n log n) for sorting + O(n) for matching = O(n log n)
Space Complexity: O(n) for storing balances and settlement results

Example Usage:
    from tabsettle.utils.min_cash_flow import min_cash_flow

    settlements = min_cash_flow({"A": 8000, "B": -1000, "C": -7000})

    # Result: [{"from": "C", "to": "A", "amount": 7000},
    #          {"from": "B", "to": "A", "amount": 1000}]
"""

import logging
from typing import Dict, List, Union

# Configure logger
logger = logging.getLogger(__name__)


def balance_leakage(balances: Dict[str, int]) -> int:
    """
    Return the sum of all balances in cents.

    In a correctly balanced event the sum is exactly zero; anything else is
    money that the plan cannot route (e.g. legacy expenses whose splits were
    off by a cent).

    Example:
        >>> balance_leakage({"A": 5000, "B": -5000})
        0
        >>> balance_leakage({"A": 5000, "B": -4999})
        1
    """
    return sum(balances.values())


def min_cash_flow(
    balances: Dict[str, int],
    max_iterations: int = 10000
) -> List[Dict[str, Union[str, int]]]:
    """
    Minimize the number of transactions needed to settle all debts.

    Edge Cases Handled:
    - If fewer than two entities: returns []
    - If all balances are zero: returns []
    - If no creditors or no debtors: returns []
    - If balances don't sum to zero: logs the leakage and settles what it can
    - If max_iterations exceeded: raises RuntimeError (prevents infinite loops)

    Args:
        balances: Dictionary mapping entity_id -> net balance in cents
        max_iterations: Maximum number of iterations (default: 10000)

    Returns:
        List of settlement transactions, each with format:
        [{"from": str, "to": str, "amount": int}, ...]

    Raises:
        RuntimeError: If max_iterations exceeded (malformed input)

    Example:
        >>> min_cash_flow({"A": 8000, "B": -1000, "C": -7000})
        [{'from': 'C', 'to': 'A', 'amount': 7000}, {'from': 'B', 'to': 'A', 'amount': 1000}]
    """
    if len(balances) < 2:
        return []

    leakage = balance_leakage(balances)
    if leakage != 0:
        logger.warning(
            f"Balances not zero-sum: total={leakage} cents. "
            f"The unmatched remainder will not be settled."
        )

    # Separate into creditors and debtors
    creditors = [
        [entity_id, balance]
        for entity_id, balance in balances.items()
        if balance > 0
    ]
    debtors = [
        [entity_id, -balance]  # Store as positive for easier matching
        for entity_id, balance in balances.items()
        if balance < 0
    ]

    # Edge case: no creditors or no debtors
    if not creditors or not debtors:
        return []

    # Sort by amount (largest first); sort is stable so ties keep input order
    creditors.sort(key=lambda x: x[1], reverse=True)
    debtors.sort(key=lambda x: x[1], reverse=True)

    settlements = []
    iterations = 0

    # Greedy matching algorithm
    i, j = 0, 0
    while i < len(debtors) and j < len(creditors):
        iterations += 1

        # Safety check: prevent infinite loops
        if iterations > max_iterations:
            raise RuntimeError(
                f"Settlement loop exceeded max_iterations ({max_iterations}). "
                f"This may indicate malformed input."
            )

        debtor = debtors[i]
        creditor = creditors[j]

        settlement_amount = min(debtor[1], creditor[1])
        if settlement_amount > 0:
            settlements.append({
                "from": debtor[0],
                "to": creditor[0],
                "amount": settlement_amount
            })

        debtor[1] -= settlement_amount
        creditor[1] -= settlement_amount

        if debtor[1] == 0:
            i += 1
        if creditor[1] == 0:
            j += 1

    return settlements
