"""Maximal-lottery solver for pairwise-majority (Condorcet) elections.

This module computes an optimal randomized outcome of an election from its pairwise majority
relation. If some candidates are beaten by nobody, they win outright (a pure strategy on the
Condorcet winner, or a uniform lottery over tied undominated candidates). Otherwise the relation
is split into weakly-connected components, every component is solved as a symmetric zero-sum
"margin game" through linear programming, and the per-component equilibria are mixed uniformly.
It also includes utilities for tallying ballots into a duel matrix and thresholding it into a
dominance graph.

Usage:
    uv run maximal_lotteries.py --num-candidates 64 --num-voters 1001 --samples 5

See: https://en.wikipedia.org/wiki/Maximal_lotteries
"""
import enum
import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from numba import njit
from scipy.optimize import linprog
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

logger = logging.getLogger(__name__)

# HiGHS addresses the non-zeros of the constraint matrix with 32-bit integers, and the dense
# float64 copy of an n x n game must stay addressable by the platform index type.
MAX_CANDIDATES = min(
    math.isqrt(np.iinfo(np.int32).max),
    math.isqrt(np.iinfo(np.intp).max // np.dtype(np.float64).itemsize),
)


class StrategyKind(enum.Enum):
    PURE = "pure"
    MIXED = "mixed"
    ERROR = "error"


class FailureReason(enum.Enum):
    """Why no strategy could be produced."""

    INVALID_INPUT = "invalid input"
    ALLOCATION_FAILURE = "allocation failure"
    SOLVER_FAILURE = "solver failure"


class StrategyError(RuntimeError):
    """Raised when an optimal strategy cannot be computed or used."""

    def __init__(
        self,
        reason: FailureReason,
        message: str = "could not solve for optimal strategy",
    ):
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True, eq=False)
class Strategy:
    """
    Outcome of a solve: a pure strategy on one candidate, a mixed strategy (a lottery over all
    candidates), or an error. Use the `pure`, `mixed` and `error` constructors.

    Attributes:
        kind (StrategyKind): Which variant this is
        candidate (Optional[int]): Winning candidate of a pure strategy
        probabilities (Optional[np.ndarray]): Read-only probability vector of a mixed strategy
        reason (Optional[FailureReason]): Failure kind of an error strategy
        message (str): Human-readable failure description
    """

    kind: StrategyKind
    candidate: Optional[int] = None
    probabilities: Optional[np.ndarray] = None
    reason: Optional[FailureReason] = None
    message: str = ""

    @classmethod
    def pure(cls, candidate: int) -> "Strategy":
        return cls(StrategyKind.PURE, candidate=int(candidate))

    @classmethod
    def mixed(cls, probabilities: np.ndarray) -> "Strategy":
        probabilities = np.array(probabilities, dtype=np.float64)
        probabilities.setflags(write=False)
        return cls(StrategyKind.MIXED, probabilities=probabilities)

    @classmethod
    def error(cls, reason: FailureReason, message: str = "") -> "Strategy":
        return cls(StrategyKind.ERROR, reason=reason, message=message)

    @property
    def is_pure(self) -> bool:
        return self.kind is StrategyKind.PURE

    @property
    def is_mixed(self) -> bool:
        return self.kind is StrategyKind.MIXED

    @property
    def is_error(self) -> bool:
        return self.kind is StrategyKind.ERROR

    def _check(self):
        if self.is_error:
            raise StrategyError(self.reason, self.message or "no strategy was found")

    def probability(self, candidate: int) -> float:
        """
        Probability with which `candidate` is elected. A pure strategy answers 0 for every
        index but its own, a mixed strategy raises `IndexError` for indices out of range.
        """
        self._check()
        if self.is_pure:
            return float(candidate == self.candidate)
        if not 0 <= candidate < len(self.probabilities):
            raise IndexError(f"candidate {candidate} is out of range")
        return float(self.probabilities[candidate])

    def __getitem__(self, candidate: int) -> float:
        return self.probability(candidate)

    def to_array(self, num_candidates: int) -> np.ndarray:
        """Dense probability vector over `num_candidates` candidates."""
        self._check()
        if self.is_pure:
            dense = np.zeros(num_candidates, dtype=np.float64)
            dense[self.candidate] = 1.0
            return dense
        return np.array(self.probabilities)

    def play(self, rng: Optional[np.random.Generator] = None) -> int:
        """
        Draws the elected candidate. Pure strategies are deterministic; mixed strategies walk the
        probability vector with a uniform roll in [0, 1), and fall back to the last candidate if
        rounding exhausts the vector.
        """
        self._check()
        if self.is_pure:
            return self.candidate
        if rng is None:
            rng = np.random.default_rng()
        roll = rng.random()
        for candidate, probability in enumerate(self.probabilities):
            if roll < probability:
                return candidate
            roll -= probability
        return len(self.probabilities) - 1


########################################################################################
### Ballots, duel tallies and dominance graphs
########################################################################################


def empty_duels(num_candidates: int) -> np.ndarray:
    """Zeroed duel tally. Cell (i, j) counts the ballots preferring candidate i to candidate j."""
    return np.zeros((num_candidates, num_candidates), dtype=np.int64)


def cast_ballot(duels: np.ndarray, compare: Callable[[int, int], int]):
    """
    Adds one ballot to the duel tally. `compare(i, j)` is positive when the ballot prefers
    candidate i, negative when it prefers candidate j, and zero when it expresses no preference.
    Comparisons land in a scratch matrix first, so if `compare` raises, the tally is unchanged.

    Space complexity: O(n^2), where n is the number of candidates.
    Time complexity: O(n^2) calls to `compare`.
    """
    num_candidates = duels.shape[0]
    scratch = np.zeros(duels.shape, dtype=np.uint8)
    for i in range(1, num_candidates):
        for j in range(i):
            comparison = compare(i, j)
            if comparison > 0:
                scratch[i, j] = 1
            elif comparison < 0:
                scratch[j, i] = 1
    duels += scratch


class PreorderBallot:
    """
    A ballot placing each ranked candidate into an interval of rank values, higher being better.
    Candidate i is preferred to j when i's lowest rank exceeds j's highest. Overlapping intervals
    express indifference, and unranked candidates are compared with nobody.
    """

    def __init__(self, ranks: Optional[Dict[int, Tuple[int, int]]] = None):
        self._ranks: Dict[int, Tuple[int, int]] = {}
        for candidate, (low, high) in (ranks or {}).items():
            self.rank(candidate, low, high)

    def rank(self, candidate: int, low: int, high: Optional[int] = None):
        if high is None:
            high = low
        if low > high:
            raise ValueError("invalid rank bounds")
        self._ranks[candidate] = (low, high)

    def unrank(self, candidate: int):
        self._ranks.pop(candidate, None)

    def is_ranked(self, candidate: int) -> bool:
        return candidate in self._ranks

    def compare(self, i: int, j: int) -> int:
        if i not in self._ranks or j not in self._ranks:
            return 0
        low_i, high_i = self._ranks[i]
        low_j, high_j = self._ranks[j]
        return int(low_i > high_j) - int(high_i < low_j)

    def cast_into(self, duels: np.ndarray):
        cast_ballot(duels, self.compare)


@njit
def populate_preferences_from_ranking(preferences: np.ndarray, ranking: np.ndarray):
    """
    Populates the preference matrix based on a ranking of candidates, most preferred first.
    The candidate must be represented as monotonic integers starting from 0.
    Every ranked candidate is preferred to every candidate missing from the ranking, while
    missing candidates stay tied among themselves.

    Space complexity: O(n), where n is the number of candidates.
    Time complexity: O(n^2), where n is the number of candidates.
    """
    num_candidates = preferences.shape[0]
    ranked = np.zeros(num_candidates, dtype=np.bool_)
    for preferred in ranking:
        ranked[preferred] = True

    for i, preferred in enumerate(ranking):
        for opponent in ranking[i + 1 :]:
            preferences[preferred, opponent] += 1
        for opponent in range(num_candidates):
            if not ranked[opponent]:
                preferences[preferred, opponent] += 1


def build_pairwise_preferences(
    voter_rankings: Sequence[np.ndarray],
    num_candidates: Optional[int] = None,
) -> np.ndarray:
    """
    For every voter in the population, receives a (potentially incomplete) ranking of candidates,
    and builds a square preference matrix based on the rankings. Every cell (i, j) in the matrix
    contains the number of voters who prefer candidate i to candidate j.
    The candidate must be represented as monotonic integers starting from 0.
    Unless given, the number of candidates is the maximum candidate index plus one.
    Raises `ValueError` for candidate indices outside [0, num_candidates).

    Space complexity: O(n^2), where n is the number of candidates.
    Time complexity: O(m * n^2), where n is the number of candidates and m is the number of voters.
    """
    voter_rankings = [np.asarray(ranking, dtype=np.int64) for ranking in voter_rankings]
    if num_candidates is None:
        num_candidates = 1
        for ranking in voter_rankings:
            if len(ranking):
                num_candidates = max(num_candidates, int(np.max(ranking)) + 1)

    for ranking in voter_rankings:
        if len(ranking) and (ranking.min() < 0 or ranking.max() >= num_candidates):
            raise ValueError(f"ranking {ranking.tolist()} names candidates outside [0, {num_candidates})")

    preferences = empty_duels(num_candidates)
    for ranking in voter_rankings:
        populate_preferences_from_ranking(preferences, ranking)
    return preferences


def make_dominance_graph(duels: np.ndarray) -> np.ndarray:
    """
    Thresholds a duel tally into the majority relation: cell (i, j) is set when more ballots
    prefer candidate i to j than the opposite. Ties leave both directions unset.
    """
    duels = np.asarray(duels)
    return duels > duels.T


########################################################################################
### Equilibrium solver
########################################################################################


def find_sources(graph: np.ndarray) -> np.ndarray:
    """Mask of candidates with no incoming dominance edge, i.e. beaten by nobody."""
    return ~graph.any(axis=0)


def decompose_components(graph: np.ndarray) -> List[np.ndarray]:
    """
    Splits candidates into weakly-connected components of the dominance relation, ignoring edge
    direction. Members are listed in ascending order of their original index, and components in
    order of their smallest member.
    """
    _, labels = connected_components(csr_matrix(graph), directed=True, connection="weak")
    components: Dict[int, List[int]] = {}
    for candidate, label in enumerate(labels):
        components.setdefault(int(label), []).append(candidate)
    return [np.array(members, dtype=np.intp) for members in components.values()]


def payoff_matrix(graph: np.ndarray) -> np.ndarray:
    """Margin game payoffs: +1 where the row candidate dominates, -1 where it is dominated."""
    return graph.astype(np.float64) - graph.T.astype(np.float64)


def expected_payoff(graph: np.ndarray, left: np.ndarray, right: np.ndarray) -> float:
    """Expected payoff of playing the `left` lottery against the `right` one."""
    return float(left @ payoff_matrix(graph) @ right)


def solve_game(graph: np.ndarray, maximin: bool) -> np.ndarray:
    """
    Solves the margin game of one component with a single linear program.

    With `maximin`, maximizes sum(x) subject to (2 + P) x <= 1, otherwise minimizes sum(x)
    subject to (2 - P) x >= 1, where P is the payoff matrix and x >= 0. In both cases the
    optimal x, divided by the objective value, is an optimal mixed strategy.

    Space complexity: O(m^2), where m is the number of candidates in the component.
    """
    num_candidates = graph.shape[0]
    payoffs = payoff_matrix(graph)
    ones = np.ones(num_candidates)
    if maximin:
        result = linprog(-ones, A_ub=2.0 + payoffs, b_ub=ones, bounds=(0, None), method="highs")
    else:
        result = linprog(ones, A_ub=payoffs - 2.0, b_ub=-ones, bounds=(0, None), method="highs")

    if result.status != 0:
        raise StrategyError(FailureReason.SOLVER_FAILURE, f"linear program failed: {result.message}")
    objective = -result.fun if maximin else result.fun
    if not objective > 0.0:
        raise StrategyError(FailureReason.SOLVER_FAILURE, f"degenerate objective value {objective}")

    # Round-off can push variables slightly below their zero bound.
    return np.maximum(result.x, 0.0) / objective


def optimal_component_strategy(graph: np.ndarray) -> np.ndarray:
    """
    Optimal mixed strategy of one weakly-connected component without sources.

    Both LP senses are solved. Since the game may have a whole polytope of equilibria, the
    maximin solution is kept unless it scores a positive expected payoff against the
    complementary one, in which case the latter is returned.
    """
    try:
        left = solve_game(graph, maximin=True)
    except StrategyError as e:
        logger.warning("Maximin program failed (%s), falling back to the complementary one", e)
        return solve_game(graph, maximin=False)

    try:
        right = solve_game(graph, maximin=False)
    except StrategyError as e:
        logger.warning("Complementary program failed (%s), keeping the maximin solution", e)
        return left

    if expected_payoff(graph, left, right) <= 0.0:
        logger.debug("Keeping the maximin solution for a component of %d", graph.shape[0])
        return left
    logger.debug("Keeping the complementary solution for a component of %d", graph.shape[0])
    return right


def _stable_sum_unbuffered(values: Sequence[float]) -> float:
    # Adds the distinct positive values in ascending order, one selection pass per value.
    total = 0.0
    floor = 0.0
    while True:
        smallest = math.inf
        for value in values:
            if floor < value < smallest:
                smallest = value
        if smallest == math.inf:
            return total
        for value in values:
            if value == smallest:
                total += value
        floor = smallest


def stable_sum(values: Sequence[float]) -> float:
    """
    Sums non-negative numbers in ascending order, which bounds the rounding error better than
    arbitrary order. Without memory for the sorted copy, falls back to a quadratic selection.
    """
    try:
        ordered = sorted(values)
    except MemoryError:
        return _stable_sum_unbuffered(values)
    total = 0.0
    for value in ordered:
        total += value
    return total


def combine_strategies(strategies: Sequence[np.ndarray]) -> np.ndarray:
    """
    Mixes k per-component strategies, each embedded with zeros into the full candidate space,
    as if a component was picked uniformly at random and then its equilibrium was played.
    """
    stacked = np.vstack(strategies)
    count_components = stacked.shape[0]
    return np.array(
        [stable_sum(column) / count_components for column in stacked.T],
        dtype=np.float64,
    )


def _as_dominance_matrix(graph, max_candidates: int) -> np.ndarray:
    if graph is None:
        raise StrategyError(FailureReason.INVALID_INPUT, "no dominance relation given")
    try:
        dominates = np.asarray(graph, dtype=bool)
    except (TypeError, ValueError) as e:
        raise StrategyError(FailureReason.INVALID_INPUT, f"malformed dominance relation: {e}")

    if dominates.ndim == 1:
        num_candidates = math.isqrt(dominates.size)
        if num_candidates * num_candidates != dominates.size:
            raise StrategyError(
                FailureReason.INVALID_INPUT,
                f"{dominates.size} entries do not form a square relation",
            )
        dominates = dominates.reshape(num_candidates, num_candidates)
    elif dominates.ndim != 2 or dominates.shape[0] != dominates.shape[1]:
        raise StrategyError(FailureReason.INVALID_INPUT, f"relation of shape {dominates.shape} is not square")

    num_candidates = dominates.shape[0]
    if num_candidates == 0:
        raise StrategyError(FailureReason.INVALID_INPUT, "election has no candidates")
    if num_candidates > max_candidates:
        raise StrategyError(
            FailureReason.INVALID_INPUT,
            f"{num_candidates} candidates exceed the limit of {max_candidates}",
        )
    if dominates.diagonal().any():
        raise StrategyError(FailureReason.INVALID_INPUT, "a candidate cannot dominate itself")
    if (dominates & dominates.T).any():
        raise StrategyError(FailureReason.INVALID_INPUT, "two candidates cannot dominate each other")
    return dominates


def optimal_strategy(graph, max_candidates: int = MAX_CANDIDATES) -> Strategy:
    """
    Computes the maximal lottery of an election given its dominance relation, as an n x n boolean
    matrix or a flat row-major sequence of n^2 booleans, where entry (i, j) is set when candidate
    i beats candidate j by majority.

    Undominated candidates win outright: a single one yields a pure strategy, several yield a
    uniform lottery over them. Otherwise every weakly-connected component is solved as a margin
    game, and the component equilibria are averaged. Failures are reported as an error strategy,
    never raised, and never as a partially computed lottery.

    Space complexity: O(n^2), where n is the number of candidates.
    """
    try:
        dominates = _as_dominance_matrix(graph, max_candidates)
        num_candidates = dominates.shape[0]

        sources = find_sources(dominates)
        count_sources = int(np.count_nonzero(sources))
        if count_sources == 1:
            logger.debug("Found a Condorcet winner among %d candidates", num_candidates)
            return Strategy.pure(int(np.flatnonzero(sources)[0]))
        if count_sources > 1:
            logger.debug("Found %d undominated candidates", count_sources)
            return Strategy.mixed(sources / count_sources)

        components = decompose_components(dominates)
        logger.debug("Solving %d components of %d candidates", len(components), num_candidates)
        strategies = []
        for members in components:
            embedded = np.zeros(num_candidates, dtype=np.float64)
            embedded[members] = optimal_component_strategy(dominates[np.ix_(members, members)])
            strategies.append(embedded)
        return Strategy.mixed(combine_strategies(strategies))

    except StrategyError as e:
        return Strategy.error(e.reason, str(e))
    except MemoryError:
        return Strategy.error(FailureReason.ALLOCATION_FAILURE, "out of memory")


def format_time(elapsed_sec: float) -> str:
    """Format time with appropriate unit (ms or s)."""
    elapsed_ms = elapsed_sec * 1000
    if elapsed_ms < 1000:
        return f"{int(elapsed_ms)} ms"
    else:
        return f"{elapsed_sec:.2f} s"


if __name__ == "__main__":
    import time
    import argparse

    parser = argparse.ArgumentParser(description="Compute the maximal lottery of a random election")
    parser.add_argument(
        "--num-voters",
        type=int,
        default=0,
        help="Number of voters in the population, 0 for random duel tally",
    )
    parser.add_argument(
        "--num-candidates",
        type=int,
        default=32,
        help="Number of candidates in the election",
    )
    parser.add_argument(
        "--ballot-length",
        type=int,
        default=0,
        help="Truncate every ranking to this many candidates, 0 for complete rankings",
    )
    parser.add_argument(
        "--max-candidates",
        type=int,
        default=MAX_CANDIDATES,
        help="Refuse elections with more candidates than this",
    )
    parser.add_argument(
        "--samples",
        type=int,
        default=1,
        help="Number of winners to draw from the lottery",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the random election and the draws",
    )
    args = parser.parse_args()

    num_voters = args.num_voters
    num_candidates = args.num_candidates
    rng = np.random.default_rng(args.seed)

    # Print header
    print("=== Maximal Lotteries (Python) ===")
    print()

    # Print configuration
    print("Configuration:")
    voters_str = f"{num_voters:,}" if num_voters > 0 else "random"
    print(f"  Problem size: {num_candidates:,} candidates × {voters_str} voters")
    if args.ballot_length > 0:
        print(f"  Ballot length: {args.ballot_length}")
    print(f"  Candidate limit: {args.max_candidates:,}")
    print()

    # Generate random voter rankings
    print("Generating preferences...")
    start_time = time.time()
    if num_voters == 0:
        duels = rng.integers(0, num_candidates, (num_candidates, num_candidates))
        np.fill_diagonal(duels, 0)
    else:
        voter_rankings = [rng.permutation(num_candidates) for _ in range(num_voters)]
        if args.ballot_length > 0:
            voter_rankings = [ranking[: args.ballot_length] for ranking in voter_rankings]
        duels = build_pairwise_preferences(voter_rankings, num_candidates)
    graph = make_dominance_graph(duels)
    print(f"  Tallied in {format_time(time.time() - start_time)}")
    print()

    print("─── Solving ────────────────────────────────────────")
    print()
    print("→ Equilibrium (HiGHS)")
    start_time = time.time()
    strategy = optimal_strategy(graph, max_candidates=args.max_candidates)
    print(f"  Run:     {format_time(time.time() - start_time)}")
    if strategy.is_error:
        print(f"  ✗ Solve failed: {strategy.reason.value}: {strategy.message}")
        print()
        raise SystemExit(1)
    print()

    # Print election results
    print("─── Election Results ───────────────────────────────")
    print()
    if strategy.is_pure:
        print(f"  Condorcet winner: Candidate #{strategy.candidate}")
    else:
        probabilities = strategy.probabilities
        support = np.flatnonzero(probabilities > 1e-9)
        print(f"  Lottery over {len(support)} candidates")
        for candidate in sorted(support, key=lambda x: probabilities[x], reverse=True)[:5]:
            print(f"    #{candidate}: {probabilities[candidate]:.4f}")
    drawn = [strategy.play(rng) for _ in range(args.samples)]
    print(f"  Drawn:  {', '.join(f'#{candidate}' for candidate in drawn)}")
    print()
