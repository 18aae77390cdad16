"""
Minimal demonstration of the Condorcet paradox resolved by a maximal lottery.

Three voters with cyclic preferences over Python, Rust and Go leave no majority winner, so the
election falls back to the margin game and elects each language with probability 1/3. Adding a
single voter breaks the cycle and turns the lottery back into a deterministic Condorcet winner.
Requires NumPy, Numba and SciPy.
"""
import numpy as np

from maximal_lotteries import build_pairwise_preferences, make_dominance_graph, optimal_strategy

names = ['Python', 'Rust', 'Go']

def lottery(rankings):
    strategy = optimal_strategy(make_dominance_graph(build_pairwise_preferences(rankings, len(names))))
    return {name: round(strategy[i], 3) for i, name in enumerate(names)}

r = [np.array([0, 1, 2]), np.array([1, 2, 0]), np.array([2, 0, 1])]
cyclic = lottery(r); r.append(np.array([1, 2, 0])); resolved = lottery(r)
print(f"Cyclic (3 voters): {cyclic}\nAfter adding a Rust-first voter: {resolved}")
print('✓ Paradox resolved!' if all(abs(p - 1 / 3) < 1e-3 for p in cyclic.values()) and resolved['Rust'] == 1.0 else '✗ Unexpected lottery')
